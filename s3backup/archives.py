# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stored archives - list and download backups kept in the bucket.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List

import structlog

from s3backup.core import BackupState
from s3backup.errors import explain_missing_bucket_env
from s3backup.exceptions import ConfigurationError, InvalidRequestError
from s3backup.naming import is_archive_key, parse_archive_key
from s3backup.storage import ObjectStream, list_objects, open_object

logger = structlog.get_logger()


@dataclass
class ArchiveSummary:
    """One stored archive as shown to users."""

    key: str
    project_name: str
    date: str
    dataset: str
    project_id: str
    size: int
    last_modified: datetime | None

    @property
    def size_mb(self) -> str:
        return f"{self.size / (1024 * 1024):.2f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "projectName": self.project_name,
            "date": self.date,
            "dataset": self.dataset,
            "projectId": self.project_id,
            "size": self.size,
            "lastModified": (
                self.last_modified.isoformat() if self.last_modified else None
            ),
            "sizeMB": self.size_mb,
        }


def summarize_objects(objects: List[Dict[str, Any]]) -> List[ArchiveSummary]:
    """
    Turn raw bucket listing entries into archive summaries.

    Non-archive objects are skipped. The result is sorted by the embedded
    date, newest first (plain string comparison); keys without a date
    sort last.
    """
    summaries: List[ArchiveSummary] = []

    for obj in objects:
        key = obj.get("Key")
        if not key or not is_archive_key(key):
            continue

        parsed = parse_archive_key(key)
        summaries.append(
            ArchiveSummary(
                key=key,
                project_name=parsed.project_name,
                date=parsed.date,
                dataset=parsed.dataset,
                project_id=parsed.project_id,
                size=obj.get("Size") or 0,
                last_modified=obj.get("LastModified"),
            )
        )

    summaries.sort(key=lambda s: (s.date != "", s.date), reverse=True)
    return summaries


def _require_bucket(state: BackupState) -> None:
    if not state["config"].bucket:
        raise ConfigurationError(explain_missing_bucket_env())


async def list_archives(state: BackupState) -> List[ArchiveSummary]:
    """
    List stored archives, newest first.

    Returns an empty list when the bucket holds no archives.

    Raises:
        ConfigurationError: If no bucket is configured
        StorageError: If the listing fails
    """
    _require_bucket(state)

    objects = await list_objects(state["config"], state["s3_session"])
    summaries = summarize_objects(objects)

    logger.info("archives_listed", total_objects=len(objects), archives=len(summaries))
    return summaries


async def open_archive(state: BackupState, key: str) -> ObjectStream:
    """
    Open a stored archive for streaming.

    Raises:
        InvalidRequestError: If the key is empty
        ArchiveNotFoundError: If the key does not exist
        ConfigurationError: If no bucket is configured
        StorageError: If the fetch fails
    """
    if not key or not key.strip():
        raise InvalidRequestError("Backup key is required", details={"field": "key"})

    _require_bucket(state)

    logger.info("archive_download_started", key=key)
    return await open_object(state["config"], state["s3_session"], key)
