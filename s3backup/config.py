# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Backup Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while backup jobs are running.

Storage credentials and the bucket name may be left empty here: a
missing value is reported by the backup pre-flight check, so the HTTP
service can still start (and list nothing) on a half-configured host.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List
import re

MIN_PART_SIZE = 5 * 1024 * 1024
MAX_LIST_PAGE_SIZE = 1000


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    # Must be lowercase letters, numbers, hyphens, or periods
    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    # No consecutive periods
    if ".." in bucket:
        return False

    # Not IP address format
    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for the backup service.

    This configuration is frozen after creation so that concurrent
    backup jobs all observe the same settings.
    """

    # S3 bucket receiving archives (empty means "not configured")
    bucket: str = ""

    # AWS region
    region: str = "ca-central-1"

    # Static credentials for the bucket
    access_key_id: str = ""
    secret_access_key: str = field(default="", repr=False)

    # Custom endpoint for S3-compatible stores
    endpoint_url: str | None = None

    # Directory where archives are written before upload
    work_dir: Path = field(default_factory=lambda: Path("."))

    # Multipart upload tuning
    part_size: int = MIN_PART_SIZE
    upload_concurrency: int = 4

    # Page size for bucket listing
    list_page_size: int = MAX_LIST_PAGE_SIZE

    # Query the content store once before exporting
    probe_before_export: bool = True

    # Concurrent asset downloads during export
    asset_concurrency: int = 12

    # Seconds a finished job stays queryable (0 keeps it forever)
    status_ttl_seconds: int = 86400

    # Seconds to wait for running jobs on shutdown
    shutdown_grace_seconds: float = 30.0

    # Chunk size for streamed downloads
    download_chunk_size: int = 64 * 1024

    # Timeout for content store requests
    content_store_timeout: float = 300.0

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if self.bucket and not _validate_bucket_name(self.bucket):
            errors.append(f"Invalid bucket name: {self.bucket}")

        if self.part_size < MIN_PART_SIZE:
            errors.append(
                f"part_size must be >= {MIN_PART_SIZE} bytes, got {self.part_size}"
            )

        if self.upload_concurrency < 1:
            errors.append(
                f"upload_concurrency must be >= 1, got {self.upload_concurrency}"
            )

        if not 1 <= self.list_page_size <= MAX_LIST_PAGE_SIZE:
            errors.append(
                f"list_page_size must be between 1 and {MAX_LIST_PAGE_SIZE}, "
                f"got {self.list_page_size}"
            )

        if self.asset_concurrency < 1:
            errors.append(
                f"asset_concurrency must be >= 1, got {self.asset_concurrency}"
            )

        if self.status_ttl_seconds < 0:
            errors.append(
                f"status_ttl_seconds must be >= 0, got {self.status_ttl_seconds}"
            )

        if self.shutdown_grace_seconds < 0:
            errors.append(
                f"shutdown_grace_seconds must be >= 0, got {self.shutdown_grace_seconds}"
            )

        if self.download_chunk_size < 1:
            errors.append(
                f"download_chunk_size must be >= 1, got {self.download_chunk_size}"
            )

        # Raise all errors at once
        if errors:
            from s3backup.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def missing_storage_settings(self) -> List[str]:
        """Return the environment names of required storage settings that are empty."""
        missing: List[str] = []
        if not self.bucket:
            missing.append("S3_BUCKET_NAME")
        if not self.access_key_id:
            missing.append("AWS_ACCESS_KEY_ID")
        if not self.secret_access_key:
            missing.append("AWS_SECRET_ACCESS_KEY")
        return missing

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return BackupConfig(**current)
