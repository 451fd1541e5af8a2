# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

The service is configured entirely through environment variables, with
an optional ``.env`` file in the working directory for local runs.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from s3backup.config import BackupConfig
from s3backup.errors import explain_invalid_bool_env, explain_invalid_int_env
from s3backup.exceptions import ConfigurationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_int(name: str, value: str | None, default: int, minimum: int = 0) -> int:
    if not value:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_int_env(name, value, minimum)) from exc
    if number < minimum:
        raise ConfigurationError(explain_invalid_int_env(name, value, minimum))
    return number


def _parse_bool(name: str, value: str | None, default: bool) -> bool:
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_bool_env(name, value))


def create_config_from_env(*, load_env_file: bool = True) -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Required for backups (may be absent at startup, reported per job):
        - S3_BUCKET_NAME: Bucket receiving archives
        - AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY: Storage credentials

    Optional environment variables:
        - AWS_REGION: AWS region (default: ca-central-1)
        - S3_ENDPOINT_URL: Endpoint for S3-compatible storage
        - BACKUP_WORK_DIR: Directory for archives awaiting upload (default: .)
        - BACKUP_PART_SIZE_MB: Multipart part size in MiB (default: 5, minimum 5)
        - BACKUP_UPLOAD_CONCURRENCY: Parts uploaded in parallel (default: 4)
        - BACKUP_STATUS_TTL_SECONDS: How long finished jobs stay queryable
          (default: 86400, 0 keeps them forever)
        - BACKUP_SKIP_PROBE: Skip the content store connectivity probe
    """

    if load_env_file:
        load_dotenv(find_dotenv(usecwd=True), override=False)

    part_size_mb = _parse_int(
        "BACKUP_PART_SIZE_MB", os.getenv("BACKUP_PART_SIZE_MB"), 5, minimum=5
    )
    upload_concurrency = _parse_int(
        "BACKUP_UPLOAD_CONCURRENCY", os.getenv("BACKUP_UPLOAD_CONCURRENCY"), 4, minimum=1
    )
    status_ttl = _parse_int(
        "BACKUP_STATUS_TTL_SECONDS", os.getenv("BACKUP_STATUS_TTL_SECONDS"), 86400
    )
    skip_probe = _parse_bool("BACKUP_SKIP_PROBE", os.getenv("BACKUP_SKIP_PROBE"), False)

    work_dir_env = os.getenv("BACKUP_WORK_DIR")

    return BackupConfig(
        bucket=os.getenv("S3_BUCKET_NAME", ""),
        region=os.getenv("AWS_REGION") or "ca-central-1",
        access_key_id=os.getenv("AWS_ACCESS_KEY_ID", ""),
        secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", ""),
        endpoint_url=os.getenv("S3_ENDPOINT_URL") or None,
        work_dir=Path(work_dir_env) if work_dir_env else Path("."),
        part_size=part_size_mb * 1024 * 1024,
        upload_concurrency=upload_concurrency,
        probe_before_export=not skip_probe,
        status_ttl_seconds=status_ttl,
    )
