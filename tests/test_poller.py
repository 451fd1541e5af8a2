# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Client poller tests.

The service is replaced by an httpx MockTransport and sleeping by a
recorder, so these tests run instantly.
"""

import json

import httpx
import pytest

from s3backup.exceptions import BackupNotFoundError, BackupServiceError, PollTimeoutError
from s3backup.exporter import BackupRequest
from s3backup.poller import PollPolicy, poll_backup, request_backup
from s3backup.status import BackupStatus


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _status_sequence(*responses):
    """Serve the given responses to successive status requests, repeating the last."""
    remaining = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        response = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(response, Exception):
            raise response
        return response

    return handler


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="http://service", transport=httpx.MockTransport(handler))


def _status(status: str, **extra) -> httpx.Response:
    return httpx.Response(200, json={"status": status, "message": status, **extra})


# ============================================================================
# Polling
# ============================================================================

@pytest.mark.asyncio
async def test_poll_until_completed():
    sleep = SleepRecorder()
    updates = []
    handler = _status_sequence(
        _status("exporting"),
        _status("uploading", progress=40),
        _status("completed", s3Location="acme.tar.gz", etag='"abc"'),
    )

    async with _client(handler) as client:
        outcome = await poll_backup(
            client,
            "job-1",
            PollPolicy(initial_delay=10, interval=30),
            sleep=sleep,
            on_update=updates.append,
        )

    assert outcome.succeeded
    assert outcome.status == BackupStatus.COMPLETED
    assert outcome.location == "acme.tar.gz"
    assert outcome.etag == '"abc"'
    assert sleep.delays == [10, 30, 30]
    assert [u["status"] for u in updates] == ["exporting", "uploading", "completed"]


@pytest.mark.asyncio
async def test_poll_until_failed():
    handler = _status_sequence(_status("failed", error="Export failed: boom"))

    async with _client(handler) as client:
        outcome = await poll_backup(client, "job-1", PollPolicy(), sleep=SleepRecorder())

    assert not outcome.succeeded
    assert outcome.status == BackupStatus.FAILED
    assert outcome.error == "Export failed: boom"


@pytest.mark.asyncio
async def test_poll_retries_transient_errors():
    sleep = SleepRecorder()
    handler = _status_sequence(
        httpx.ConnectError("connection refused"),
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="not json"),
        _status("completed", s3Location="acme.tar.gz"),
    )

    async with _client(handler) as client:
        outcome = await poll_backup(
            client, "job-1", PollPolicy(initial_delay=1, interval=2), sleep=sleep
        )

    assert outcome.succeeded
    assert sleep.delays == [1, 2, 2, 2]


@pytest.mark.asyncio
async def test_poll_stops_on_unknown_backup():
    handler = _status_sequence(
        httpx.Response(404, json={"status": "ERROR", "message": "Backup not found"})
    )

    async with _client(handler) as client:
        with pytest.raises(BackupNotFoundError):
            await poll_backup(client, "job-1", PollPolicy(), sleep=SleepRecorder())


@pytest.mark.asyncio
async def test_poll_backoff_and_timeout():
    sleep = SleepRecorder()
    handler = _status_sequence(_status("uploading", progress=10))

    async with _client(handler) as client:
        with pytest.raises(PollTimeoutError):
            await poll_backup(
                client,
                "job-1",
                PollPolicy(initial_delay=1, interval=2, backoff=2, timeout=10),
                sleep=sleep,
            )

    assert sleep.delays == [1, 2, 4]


@pytest.mark.asyncio
async def test_poll_interval_capped():
    sleep = SleepRecorder()
    handler = _status_sequence(
        _status("uploading"),
        _status("uploading"),
        _status("uploading"),
        _status("completed"),
    )

    async with _client(handler) as client:
        await poll_backup(
            client,
            "job-1",
            PollPolicy(initial_delay=0, interval=50, backoff=3, max_interval=100),
            sleep=sleep,
        )

    assert sleep.delays == [0, 50, 100, 100]


# ============================================================================
# Starting
# ============================================================================

@pytest.mark.asyncio
async def test_request_backup_posts_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"status": "OK", "message": "Backup started", "backupId": "job-1"}
        )

    request = BackupRequest(
        project_id="abc123",
        dataset="production",
        api_version="2021-06-07",
        token="sk-test-token",
        project_name="Acme",
    )

    async with _client(handler) as client:
        backup_id = await request_backup(client, request)

    assert backup_id == "job-1"
    assert seen["method"] == "POST"
    assert seen["path"] == "/api/backup"
    assert seen["body"] == {
        "projectId": "abc123",
        "dataset": "production",
        "apiVersion": "2021-06-07",
        "token": "sk-test-token",
        "projectName": "Acme",
    }


@pytest.mark.asyncio
async def test_request_backup_refused():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"status": "ERROR", "message": "Invalid dataset"})

    request = BackupRequest(
        project_id="abc123",
        dataset="production",
        api_version="2021-06-07",
        token="sk-test-token",
        project_name="Acme",
    )

    async with _client(handler) as client:
        with pytest.raises(BackupServiceError) as exc_info:
            await request_backup(client, request)

    assert exc_info.value.message == "Failed to start backup"
    assert exc_info.value.details["status_code"] == 400
