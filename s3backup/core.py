# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Backup Core - Backup orchestration.

A backup job runs in the background after ``start_backup`` returns:

1. Pre-flight: storage settings must be present
2. Probe the content store (optional)
3. Export the dataset to a local tarball
4. Upload the tarball to object storage, reporting progress
5. Remove the local tarball

Every failure is caught at the job boundary and recorded in the status
table; nothing is raised to the caller that started the job.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Any, Set, TypedDict

import structlog
from ulid import ULID

from s3backup.config import BackupConfig
from s3backup.errors import (
    explain_empty_archive,
    explain_missing_archive,
    explain_missing_storage_settings,
)
from s3backup.exceptions import (
    BackupServiceError,
    CleanupError,
    ConfigurationError,
    ExportError,
)
from s3backup.exporter import BackupRequest, Exporter, SanityExporter
from s3backup.naming import create_filename
from s3backup.status import BackupStatus, StatusTable, StatusView
from s3backup.storage import build_metadata, upload_archive

logger = structlog.get_logger()


class BackupState(TypedDict):
    """Runtime state shared by the HTTP handlers and background jobs."""

    config: BackupConfig
    status_table: StatusTable
    exporter: Exporter
    s3_session: Any  # aiobotocore session
    tasks: Set[asyncio.Task]


def initialize_backup_state(
    config: BackupConfig,
    exporter: Exporter | None = None,
    status_table: StatusTable | None = None,
) -> BackupState:
    """
    Initialize runtime state for the backup service.

    Args:
        config: Backup configuration
        exporter: Content store exporter (default: SanityExporter)
        status_table: Status table (default: a new table using the configured TTL)

    Returns:
        Initialized BackupState dictionary
    """
    from aiobotocore.session import get_session

    if exporter is None:
        exporter = SanityExporter(
            timeout=config.content_store_timeout,
            asset_concurrency=config.asset_concurrency,
        )

    return BackupState(
        config=config,
        status_table=status_table or StatusTable(ttl_seconds=config.status_ttl_seconds),
        exporter=exporter,
        s3_session=get_session(),
        tasks=set(),
    )


def new_backup_id(project_id: str, dataset: str) -> str:
    """Backup ids combine the project, the dataset and a ULID (time-ordered, unique)."""
    return f"{project_id}-{dataset}-{ULID()}"


def start_backup(state: BackupState, request: BackupRequest) -> str:
    """
    Start a backup job in the background.

    The job is recorded as pending before this function returns, so a
    status query issued right afterwards always finds it. Must be called
    from a running event loop.

    Returns:
        The backup id
    """
    backup_id = new_backup_id(request.project_id, request.dataset)
    state["status_table"].create(backup_id)

    logger.info(
        "backup_started",
        backup_id=backup_id,
        project_id=request.project_id,
        dataset=request.dataset,
        project_name=request.project_name,
    )

    task = asyncio.create_task(
        run_backup(state, backup_id, request), name=f"backup:{backup_id}"
    )
    state["tasks"].add(task)
    task.add_done_callback(lambda t: _on_backup_done(state, backup_id, t))

    return backup_id


def _on_backup_done(state: BackupState, backup_id: str, task: asyncio.Task) -> None:
    """
    Supervise a finished job task.

    run_backup records its own failures; this only catches what escaped
    it (e.g. cancellation at shutdown) so no job is left non-terminal.
    """
    state["tasks"].discard(task)

    if task.cancelled():
        error = "Backup interrupted before completion"
    elif task.exception() is not None:
        error = str(task.exception())
    else:
        return

    job = state["status_table"].get(backup_id)
    if job is not None and not job.status.is_terminal:
        state["status_table"].fail(backup_id, error)

    logger.error("backup_task_aborted", backup_id=backup_id, error=error)


def _preflight(config: BackupConfig) -> None:
    missing = config.missing_storage_settings()
    if missing:
        raise ConfigurationError(
            explain_missing_storage_settings(missing),
            details={"missing": missing},
        )


async def run_backup(state: BackupState, backup_id: str, request: BackupRequest) -> None:
    """
    Drive one backup job to a terminal state.

    Never raises for job failures; the outcome is recorded in the status
    table.
    """
    config = state["config"]
    table = state["status_table"]
    exporter = state["exporter"]

    filename = create_filename(request.project_id, request.dataset, request.project_name)
    # Per-job directory so concurrent jobs for the same dataset never share a file
    archive_path = config.work_dir / backup_id / filename

    try:
        _preflight(config)

        if config.probe_before_export:
            await exporter.probe(request)

        table.transition(backup_id, BackupStatus.EXPORTING, "Exporting data")
        logger.info("export_started", backup_id=backup_id, filename=filename)

        archive_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await exporter.export(request, archive_path)
        except BackupServiceError:
            raise
        except Exception as e:
            raise ExportError(f"Export failed: {e}") from e

        if not archive_path.exists():
            raise ExportError(explain_missing_archive(str(archive_path)))
        size = archive_path.stat().st_size
        if size == 0:
            raise ExportError(explain_empty_archive(str(archive_path)))

        logger.info(
            "export_completed",
            backup_id=backup_id,
            size_mb=round(size / (1024 * 1024), 2),
        )

        table.transition(backup_id, BackupStatus.UPLOADING, "Uploading to S3...")

        def on_progress(loaded: int, total: int) -> None:
            if total and table.update_progress(backup_id, round(loaded * 100 / total)):
                logger.debug(
                    "upload_progress",
                    backup_id=backup_id,
                    loaded=loaded,
                    total=total,
                )

        result = await upload_archive(
            config,
            state["s3_session"],
            archive_path,
            key=filename,
            metadata=build_metadata(request.project_id, request.dataset),
            on_progress=on_progress,
        )

        try:
            await _remove_archive(archive_path)
        except CleanupError as e:
            # The archive is safely stored; a leftover local file is not a failure
            logger.warning("archive_cleanup_failed", backup_id=backup_id, error=str(e))

        table.complete(backup_id, s3_location=result.key, etag=result.etag)
        logger.info(
            "backup_completed",
            backup_id=backup_id,
            key=result.key,
            etag=result.etag,
        )

    except asyncio.CancelledError:
        await _cleanup_after_failure(archive_path, backup_id)
        raise

    except Exception as e:
        message = e.message if isinstance(e, BackupServiceError) else str(e)
        logger.error(
            "backup_failed",
            backup_id=backup_id,
            project_id=request.project_id,
            dataset=request.dataset,
            error_type=type(e).__name__,
            error=message,
        )
        await _cleanup_after_failure(archive_path, backup_id)
        table.fail(backup_id, message or type(e).__name__)


async def _remove_archive(archive_path: Path) -> None:
    """Remove the archive together with its per-job directory."""
    job_dir = archive_path.parent
    if not job_dir.exists():
        return
    try:
        await asyncio.get_running_loop().run_in_executor(None, shutil.rmtree, job_dir)
    except OSError as e:
        raise CleanupError(
            f"Failed to remove local archive: {e}",
            details={"path": str(archive_path)},
        ) from e
    logger.debug("local_archive_removed", path=str(archive_path))


async def _cleanup_after_failure(archive_path: Path, backup_id: str) -> None:
    """Best-effort removal of a partial archive; never masks the original error."""
    try:
        await _remove_archive(archive_path)
    except CleanupError as e:
        logger.error("archive_cleanup_failed", backup_id=backup_id, error=str(e))


def get_status(state: BackupState, backup_id: str) -> StatusView:
    """
    Look up the current status of a backup.

    Raises:
        BackupNotFoundError: If the id is unknown to this process
    """
    return state["status_table"].view(backup_id)


async def shutdown_backup_state(state: BackupState) -> None:
    """
    Wait for running jobs, then interrupt any that outlive the grace period.

    Interrupted jobs are recorded as failed and their partial archives removed.
    """
    tasks = list(state["tasks"])
    if not tasks:
        logger.info("backup_state_shutdown_complete", interrupted=0)
        return

    logger.info("waiting_for_backups", running=len(tasks))
    _, pending = await asyncio.wait(
        tasks, timeout=state["config"].shutdown_grace_seconds
    )

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    logger.info("backup_state_shutdown_complete", interrupted=len(pending))
