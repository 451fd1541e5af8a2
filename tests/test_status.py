# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Status table tests.

These tests verify the backup lifecycle rules:
- Only forward transitions (or failure) are accepted
- Terminal states accept no further writes
- Progress never decreases
- Finished entries are evicted after the TTL
"""

import pytest

from s3backup.exceptions import BackupNotFoundError, InvalidTransitionError
from s3backup.status import BackupStatus, StatusTable


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _uploading_table(backup_id: str = "job-1") -> StatusTable:
    table = StatusTable()
    table.create(backup_id)
    table.transition(backup_id, BackupStatus.EXPORTING, "Exporting data")
    table.transition(backup_id, BackupStatus.UPLOADING, "Uploading to S3...")
    return table


# ============================================================================
# Transitions
# ============================================================================

def test_new_job_is_pending():
    table = StatusTable()
    job = table.create("job-1")

    assert job.status == BackupStatus.PENDING
    assert job.message == "Starting backup process..."
    assert job.history == [BackupStatus.PENDING]
    assert "job-1" in table
    assert len(table) == 1


def test_duplicate_id_rejected():
    table = StatusTable()
    table.create("job-1")

    with pytest.raises(InvalidTransitionError):
        table.create("job-1")


def test_happy_path_history():
    table = _uploading_table()
    job = table.complete("job-1", s3_location="acme.tar.gz", etag='"abc"')

    assert job.history == [
        BackupStatus.PENDING,
        BackupStatus.EXPORTING,
        BackupStatus.UPLOADING,
        BackupStatus.COMPLETED,
    ]
    assert job.message == "Backup completed successfully"
    assert job.s3_location == "acme.tar.gz"
    assert job.etag == '"abc"'
    assert job.finished_at is not None


@pytest.mark.parametrize(
    "steps",
    [
        [],
        [BackupStatus.EXPORTING],
        [BackupStatus.EXPORTING, BackupStatus.UPLOADING],
    ],
)
def test_failed_reachable_from_every_running_state(steps):
    table = StatusTable()
    table.create("job-1")
    for status in steps:
        table.transition("job-1", status, status.value)

    job = table.fail("job-1", "boom")

    assert job.status == BackupStatus.FAILED
    assert job.error == "boom"
    assert job.message == "Backup failed"


def test_skipping_states_is_illegal():
    table = StatusTable()
    table.create("job-1")

    with pytest.raises(InvalidTransitionError):
        table.transition("job-1", BackupStatus.UPLOADING, "Uploading to S3...")

    with pytest.raises(InvalidTransitionError):
        table.complete("job-1", s3_location="x", etag=None)

    assert table.get("job-1").status == BackupStatus.PENDING


def test_terminal_states_accept_no_writes():
    table = _uploading_table()
    table.fail("job-1", "boom")

    with pytest.raises(InvalidTransitionError):
        table.complete("job-1", s3_location="x", etag=None)
    with pytest.raises(InvalidTransitionError):
        table.fail("job-1", "again")

    assert table.update_progress("job-1", 50) is False
    assert table.get("job-1").error == "boom"


def test_unknown_job_raises_not_found():
    table = StatusTable()

    with pytest.raises(BackupNotFoundError):
        table.view("missing")
    with pytest.raises(BackupNotFoundError):
        table.transition("missing", BackupStatus.EXPORTING, "Exporting data")

    assert table.get("missing") is None


# ============================================================================
# Progress
# ============================================================================

def test_progress_is_monotonic():
    table = _uploading_table()

    assert table.update_progress("job-1", 10) is True
    assert table.update_progress("job-1", 40) is True
    assert table.update_progress("job-1", 25) is False
    assert table.update_progress("job-1", 40) is False

    job = table.get("job-1")
    assert job.progress == 40
    assert job.message == "Uploading to S3... 40%"


def test_progress_is_clamped():
    table = _uploading_table()

    table.update_progress("job-1", 250)

    assert table.get("job-1").progress == 100


def test_progress_ignored_outside_uploading():
    table = StatusTable()
    table.create("job-1")
    table.transition("job-1", BackupStatus.EXPORTING, "Exporting data")

    assert table.update_progress("job-1", 30) is False
    assert table.get("job-1").progress is None
    assert table.update_progress("missing", 30) is False


# ============================================================================
# Views
# ============================================================================

def test_view_omits_unset_fields():
    clock = FakeClock(1000.0)
    table = StatusTable(clock=clock)
    table.create("job-1")
    clock.now = 1002.5

    data = table.view("job-1").to_dict()

    assert data == {
        "status": "pending",
        "message": "Starting backup process...",
        "startTime": 1_000_000,
        "duration": 2500,
    }


def test_view_of_completed_job():
    table = _uploading_table()
    table.update_progress("job-1", 100)
    table.complete("job-1", s3_location="acme.tar.gz", etag='"abc"')

    data = table.view("job-1").to_dict()

    assert data["status"] == "completed"
    assert data["progress"] == 100
    assert data["s3Location"] == "acme.tar.gz"
    assert data["etag"] == '"abc"'
    assert "error" not in data


def test_view_of_failed_job_has_error():
    table = StatusTable()
    table.create("job-1")
    table.fail("job-1", "S3_BUCKET_NAME not set")

    data = table.view("job-1").to_dict()

    assert data["status"] == "failed"
    assert data["error"] == "S3_BUCKET_NAME not set"
    assert "s3Location" not in data


# ============================================================================
# Eviction
# ============================================================================

def test_finished_jobs_evicted_after_ttl():
    clock = FakeClock(0.0)
    table = StatusTable(ttl_seconds=60, clock=clock)
    table.create("done")
    table.fail("done", "boom")
    table.create("running")

    clock.now = 30.0
    assert table.evict_expired() == 0

    clock.now = 61.0
    assert table.evict_expired() == 1

    assert "done" not in table
    assert "running" in table
    with pytest.raises(BackupNotFoundError):
        table.view("done")


def test_create_evicts_expired_entries():
    clock = FakeClock(0.0)
    table = StatusTable(ttl_seconds=10, clock=clock)
    table.create("old")
    table.fail("old", "boom")

    clock.now = 100.0
    table.create("new")

    assert "old" not in table
    assert len(table) == 1


def test_zero_ttl_keeps_everything():
    clock = FakeClock(0.0)
    table = StatusTable(ttl_seconds=0, clock=clock)
    table.create("done")
    table.fail("done", "boom")

    clock.now = 10_000_000.0

    assert table.evict_expired() == 0
    assert "done" in table
