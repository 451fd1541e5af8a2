# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Backup Exceptions - Custom exceptions for the s3backup package.
"""


class BackupServiceError(Exception):
    """Base exception for all s3backup errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BackupServiceError):
    """Raised when required settings are missing or invalid."""

    pass


class UpstreamConnectivityError(BackupServiceError):
    """Raised when the content store is unreachable or rejects the probe."""

    pass


class ExportError(BackupServiceError):
    """Raised when the export fails or produces no archive."""

    pass


class UploadError(BackupServiceError):
    """Raised when transferring the archive to object storage fails."""

    pass


class CleanupError(BackupServiceError):
    """Raised when the local archive cannot be removed."""

    pass


class StorageError(BackupServiceError):
    """Raised when listing or fetching from object storage fails."""

    pass


class ArchiveNotFoundError(StorageError):
    """Raised when a requested archive does not exist in the bucket."""

    pass


class InvalidTransitionError(BackupServiceError):
    """Raised when a backup job is moved along an illegal lifecycle edge."""

    pass


class BackupNotFoundError(BackupServiceError):
    """Raised when a backup id is unknown to the status table."""

    pass


class PollTimeoutError(BackupServiceError):
    """Raised when a client gives up waiting for a terminal state."""

    pass


class InvalidRequestError(BackupServiceError):
    """Raised when backup parameters are malformed."""

    pass
