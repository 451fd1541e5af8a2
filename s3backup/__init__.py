# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Backup - Export content store datasets and keep the archives in S3.

A backup job exports one project/dataset to a local tarball, streams it to
an S3 bucket and reports progress through an in-memory status table that
HTTP clients poll. Package name: s3backup.
"""

__version__ = "0.1.0"

# Configuration
from s3backup.config import BackupConfig
from s3backup.env import create_config_from_env

# Core functions
from s3backup.core import (
    initialize_backup_state,
    start_backup,
    get_status,
    shutdown_backup_state,
)

# Stored archives
from s3backup.archives import list_archives, open_archive

from s3backup.exporter import BackupRequest, SanityExporter
from s3backup.status import BackupStatus

__all__ = [
    # Version
    "__version__",
    # Configuration
    "BackupConfig",
    "create_config_from_env",
    # Core orchestration functions
    "initialize_backup_state",
    "start_backup",
    "get_status",
    "shutdown_backup_state",
    # Archives
    "list_archives",
    "open_archive",
    # Types
    "BackupRequest",
    "BackupStatus",
    "SanityExporter",
]
