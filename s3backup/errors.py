# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for s3backup.

These helpers centralize wording for common configuration errors so that
the HTTP service, the background jobs and the CLI present consistent,
actionable messages.
"""

from typing import Iterable


def explain_missing_storage_settings(names: Iterable[str]) -> str:
    """
    Explain that one or more object storage settings are missing.
    """

    missing = ", ".join(names)
    return (
        f"Object storage is not configured: {missing} not set. "
        "Set these environment variables before starting a backup."
    )


def explain_missing_bucket_env() -> str:
    """
    Explain that the bucket environment variable is missing.
    """

    return "S3_BUCKET_NAME environment variable is not set"


def explain_invalid_int_env(name: str, value: str | None, minimum: int) -> str:
    """
    Explain that a numeric environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        f"It must be an integer greater than or equal to {minimum}."
    )


def explain_invalid_bool_env(name: str, value: str | None) -> str:
    """
    Explain that a boolean environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: 'true', 'false', '1', '0', 'yes', 'no'."
    )


def explain_empty_archive(path: str) -> str:
    """Explain that the export finished but left an empty archive."""

    return f"Export produced an empty archive: {path}"


def explain_missing_archive(path: str) -> str:
    """Explain that the export finished without writing an archive."""

    return f"Export file not found: {path}"
