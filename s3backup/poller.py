# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Client poller - start a backup over HTTP and wait for it to finish.

Transport and parse errors while polling are treated as transient and
retried on the same schedule as a non-terminal answer. An unknown backup
id (404) ends polling: the server has no record of the job, typically
because it restarted.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

import httpx
import structlog

from s3backup.exceptions import BackupNotFoundError, BackupServiceError, PollTimeoutError
from s3backup.exporter import BackupRequest
from s3backup.status import BackupStatus

logger = structlog.get_logger()


@dataclass(frozen=True)
class PollPolicy:
    """
    Polling schedule.

    The first query happens after initial_delay; later queries after
    interval, multiplied by backoff after every attempt up to max_interval.
    With timeout set, polling stops once the accumulated wait would
    exceed it.
    """

    initial_delay: float = 10.0
    interval: float = 30.0
    backoff: float = 1.0
    max_interval: float = 300.0
    timeout: float | None = None


@dataclass
class PollOutcome:
    """Terminal result observed by the poller."""

    status: BackupStatus
    message: str
    location: str | None = None
    etag: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == BackupStatus.COMPLETED


async def request_backup(client: httpx.AsyncClient, request: BackupRequest) -> str:
    """
    Ask the service to start a backup.

    Returns:
        The backup id

    Raises:
        BackupServiceError: If the service refuses the request
        httpx.HTTPError: On transport failure
    """
    response = await client.post(
        "/api/backup",
        json={
            "projectId": request.project_id,
            "dataset": request.dataset,
            "apiVersion": request.api_version,
            "token": request.token,
            "projectName": request.project_name,
        },
    )
    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if response.status_code != 200 or payload.get("status") != "OK" or not payload.get("backupId"):
        raise BackupServiceError(
            "Failed to start backup",
            details={"status_code": response.status_code, "response": payload},
        )
    return payload["backupId"]


async def poll_backup(
    client: httpx.AsyncClient,
    backup_id: str,
    policy: PollPolicy = PollPolicy(),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_update: Callable[[Dict[str, Any]], None] | None = None,
) -> PollOutcome:
    """
    Poll the status endpoint until the backup reaches a terminal state.

    Args:
        client: httpx client pointed at the service
        backup_id: Id returned when the backup was started
        policy: Polling schedule
        sleep: Awaitable sleep (tests pass a fake)
        on_update: Called with every successfully parsed status payload

    Raises:
        BackupNotFoundError: If the service does not know the backup
        PollTimeoutError: If policy.timeout elapses first
    """
    waited = 0.0
    delay = policy.initial_delay
    interval = policy.interval

    while True:
        if policy.timeout is not None and waited + delay > policy.timeout:
            raise PollTimeoutError(
                f"Backup did not finish within {policy.timeout:g}s",
                details={"backup_id": backup_id},
            )

        await sleep(delay)
        waited += delay

        try:
            response = await client.get(f"/api/backup/status/{backup_id}")
            if response.status_code == 404:
                raise BackupNotFoundError(
                    "Backup not found", details={"backup_id": backup_id}
                )
            response.raise_for_status()
            payload = response.json()
            status = BackupStatus(payload["status"])

        except BackupNotFoundError:
            raise
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning("status_check_failed", backup_id=backup_id, error=str(e))

        else:
            if on_update:
                on_update(payload)

            if status.is_terminal:
                return PollOutcome(
                    status=status,
                    message=payload.get("message", ""),
                    location=payload.get("s3Location"),
                    etag=payload.get("etag"),
                    error=payload.get("error"),
                )

            logger.debug(
                "backup_still_running",
                backup_id=backup_id,
                status=status.value,
                progress=payload.get("progress"),
            )

        delay = interval
        interval = min(interval * policy.backoff, policy.max_interval)
