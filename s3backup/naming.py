# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Archive naming - build and parse archive object keys.

Archives are stored under ``{projectName}-{date}-{dataset}-{projectId}.tar.gz``
where ``date`` is ``YYYY-MM-DD``. The project name may itself contain
hyphens, so parsing anchors on the ISO date and falls back to taking the
rightmost three hyphen-separated segments for keys without one.
"""

import re
from dataclasses import dataclass
from datetime import date as date_type
from datetime import datetime, UTC

ARCHIVE_EXTENSIONS = (".tar.gz", ".tgz")
DEFAULT_EXTENSION = ".tar.gz"

_ISO_KEY_RE = re.compile(
    r"^(?P<project_name>.*)-(?P<date>\d{4}-\d{2}-\d{2})-(?P<dataset>.+)-(?P<project_id>[^-]+)$"
)
_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9_-]+")
_REPEATED_HYPHENS_RE = re.compile(r"-{2,}")


@dataclass(frozen=True)
class ArchiveKey:
    """Fields recovered from an archive object key."""

    project_name: str
    date: str
    dataset: str
    project_id: str


def _slugify_project_name(project_name: str) -> str:
    """
    Turn a display name into a key-safe slug.

    Whitespace is dropped ("Site Technology" -> "sitetechnology"), any other
    unsafe character becomes a hyphen.
    """
    slug = re.sub(r"\s+", "", project_name.strip().lower())
    slug = _UNSAFE_CHARS_RE.sub("-", slug)
    slug = _REPEATED_HYPHENS_RE.sub("-", slug).strip("-")
    return slug or "backup"


def create_filename(
    project_id: str,
    dataset: str,
    project_name: str,
    on: date_type | None = None,
) -> str:
    """
    Build the archive filename (and object key) for a backup.

    Args:
        project_id: Content store project id
        dataset: Dataset being exported
        project_name: Human-readable project name
        on: Export date (default: today, UTC)

    Returns:
        Filename such as ``acme-2025-01-15-production-abc123.tar.gz``
    """
    export_date = on or datetime.now(UTC).date()
    return (
        f"{_slugify_project_name(project_name)}-{export_date.isoformat()}"
        f"-{dataset}-{project_id}{DEFAULT_EXTENSION}"
    )


def is_archive_key(key: str) -> bool:
    """Return True when the key carries a recognized archive extension."""
    return key.endswith(ARCHIVE_EXTENSIONS)


def _strip_extension(name: str) -> str:
    for extension in ARCHIVE_EXTENSIONS:
        if name.endswith(extension):
            return name[: -len(extension)]
    return name


def parse_archive_key(key: str) -> ArchiveKey:
    """
    Recover project name, date, dataset and project id from a key.

    Only the last path segment is parsed. Keys that do not follow the
    naming convention yield empty fields rather than an error.
    """
    stem = _strip_extension(key.rsplit("/", 1)[-1])

    match = _ISO_KEY_RE.match(stem)
    if match:
        return ArchiveKey(
            project_name=match.group("project_name"),
            date=match.group("date"),
            dataset=match.group("dataset"),
            project_id=match.group("project_id"),
        )

    parts = stem.split("-")
    if len(parts) >= 4:
        date, dataset, project_id = parts[-3:]
        return ArchiveKey(
            project_name="-".join(parts[:-3]),
            date=date,
            dataset=dataset,
            project_id=project_id,
        )

    return ArchiveKey(project_name="", date="", dataset="", project_id="")


def download_filename(key: str) -> str:
    """Filename offered to browsers for a key: its last path segment."""
    return key.rsplit("/", 1)[-1]
