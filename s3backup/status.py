# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Status Table - Process-local lifecycle tracking for backup jobs.

Every backup job owns exactly one entry, written only by the job that
created it and read by status queries. Entries live in memory for the life
of the process; finished entries are evicted once they are older than the
configured TTL.

Lifecycle::

    pending -> exporting -> uploading -> completed
       |           |            |
       +-----------+------------+------> failed

completed and failed are terminal: no further writes are accepted.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

import structlog

from s3backup.exceptions import BackupNotFoundError, InvalidTransitionError

logger = structlog.get_logger()


class BackupStatus(str, Enum):
    """Lifecycle state of a backup job."""

    PENDING = "pending"
    EXPORTING = "exporting"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BackupStatus.COMPLETED, BackupStatus.FAILED)


_ALLOWED_TRANSITIONS: Dict[BackupStatus, frozenset] = {
    BackupStatus.PENDING: frozenset({BackupStatus.EXPORTING, BackupStatus.FAILED}),
    BackupStatus.EXPORTING: frozenset({BackupStatus.UPLOADING, BackupStatus.FAILED}),
    BackupStatus.UPLOADING: frozenset({BackupStatus.COMPLETED, BackupStatus.FAILED}),
    BackupStatus.COMPLETED: frozenset(),
    BackupStatus.FAILED: frozenset(),
}


@dataclass
class BackupJob:
    """Mutable status entry for one backup job."""

    backup_id: str
    status: BackupStatus
    message: str
    start_time: float  # epoch seconds
    progress: int | None = None
    error: str | None = None
    s3_location: str | None = None
    etag: str | None = None
    finished_at: float | None = None
    history: List[BackupStatus] = field(default_factory=list)


@dataclass(frozen=True)
class StatusView:
    """Read-only snapshot returned by status queries."""

    status: BackupStatus
    message: str
    start_time_ms: int
    duration_ms: int
    progress: int | None = None
    error: str | None = None
    s3_location: str | None = None
    etag: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        """Render the wire shape, omitting fields that are not set."""
        data: Dict[str, Any] = {
            "status": self.status.value,
            "message": self.message,
        }
        optional = {
            "progress": self.progress,
            "error": self.error,
            "s3Location": self.s3_location,
            "etag": self.etag,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        data["startTime"] = self.start_time_ms
        data["duration"] = self.duration_ms
        return data


class StatusTable:
    """
    In-memory map from backup id to BackupJob.

    All methods are synchronous and never await, so on a single event loop
    each call is atomic with respect to other coroutines.
    """

    def __init__(
        self,
        ttl_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._jobs: Dict[str, BackupJob] = {}
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, backup_id: object) -> bool:
        return backup_id in self._jobs

    def create(self, backup_id: str, message: str = "Starting backup process...") -> BackupJob:
        """Record a new job in the pending state."""
        self.evict_expired()

        if backup_id in self._jobs:
            raise InvalidTransitionError(
                f"Backup already exists: {backup_id}",
                details={"backup_id": backup_id},
            )

        job = BackupJob(
            backup_id=backup_id,
            status=BackupStatus.PENDING,
            message=message,
            start_time=self._clock(),
            history=[BackupStatus.PENDING],
        )
        self._jobs[backup_id] = job
        return job

    def get(self, backup_id: str) -> BackupJob | None:
        return self._jobs.get(backup_id)

    def _require(self, backup_id: str) -> BackupJob:
        job = self._jobs.get(backup_id)
        if job is None:
            raise BackupNotFoundError(
                "Backup not found", details={"backup_id": backup_id}
            )
        return job

    def transition(self, backup_id: str, status: BackupStatus, message: str) -> BackupJob:
        """
        Move a job to a new state.

        Raises:
            BackupNotFoundError: If the job is unknown
            InvalidTransitionError: If the edge is not part of the lifecycle
        """
        job = self._require(backup_id)

        if status not in _ALLOWED_TRANSITIONS[job.status]:
            raise InvalidTransitionError(
                f"Illegal transition {job.status.value} -> {status.value}",
                details={"backup_id": backup_id},
            )

        job.status = status
        job.message = message
        job.history.append(status)
        if status.is_terminal:
            job.finished_at = self._clock()

        logger.debug("backup_status_changed", backup_id=backup_id, status=status.value)
        return job

    def update_progress(self, backup_id: str, percent: int) -> bool:
        """
        Record upload progress.

        Values are clamped to 0-100. Updates outside the uploading state or
        lower than the recorded value are ignored.

        Returns:
            True if the stored progress changed
        """
        job = self._jobs.get(backup_id)
        if job is None or job.status != BackupStatus.UPLOADING:
            return False

        percent = max(0, min(100, int(percent)))
        if job.progress is not None and percent <= job.progress:
            return False

        job.progress = percent
        job.message = f"Uploading to S3... {percent}%"
        return True

    def complete(self, backup_id: str, s3_location: str, etag: str | None) -> BackupJob:
        """Mark a job completed with the stored object location."""
        job = self.transition(
            backup_id, BackupStatus.COMPLETED, "Backup completed successfully"
        )
        job.s3_location = s3_location
        job.etag = etag
        return job

    def fail(self, backup_id: str, error: str, message: str = "Backup failed") -> BackupJob:
        """Mark a job failed with a human-readable error."""
        job = self.transition(backup_id, BackupStatus.FAILED, message)
        job.error = error
        return job

    def view(self, backup_id: str) -> StatusView:
        """
        Snapshot a job for status queries.

        Raises:
            BackupNotFoundError: If the job is unknown (or has been evicted)
        """
        job = self._require(backup_id)
        now = self._clock()

        return StatusView(
            status=job.status,
            message=job.message,
            start_time_ms=int(job.start_time * 1000),
            duration_ms=int((now - job.start_time) * 1000),
            progress=job.progress,
            error=job.error,
            s3_location=job.s3_location,
            etag=job.etag,
        )

    def evict_expired(self) -> int:
        """
        Drop finished jobs older than the TTL.

        Running jobs are never evicted.

        Returns:
            Number of evicted entries
        """
        if not self._ttl_seconds:
            return 0

        cutoff = self._clock() - self._ttl_seconds
        expired = [
            backup_id
            for backup_id, job in self._jobs.items()
            if job.finished_at is not None and job.finished_at < cutoff
        ]
        for backup_id in expired:
            del self._jobs[backup_id]

        if expired:
            logger.debug("backup_status_evicted", count=len(expired))

        return len(expired)
