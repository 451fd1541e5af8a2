# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for s3backup tests.

Provides a moto S3 server, per-test buckets, test configuration helpers and
a scriptable exporter.
"""

import asyncio
import os
import tempfile
import uuid
from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio

# Keep botocore away from real credentials
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"

MOTO_PORT = 5123


@pytest.fixture(scope="session")
def moto_server() -> Generator[str, None, None]:
    """
    Run moto's S3 server for the whole session.

    Tests talk to it through the real aiobotocore client via endpoint_url.
    """
    from moto.server import ThreadedMotoServer

    server = ThreadedMotoServer(ip_address="127.0.0.1", port=MOTO_PORT, verbose=False)
    server.start()
    yield f"http://127.0.0.1:{MOTO_PORT}"
    server.stop()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def bucket_name() -> str:
    """Unique bucket per test; the moto server is shared."""
    return f"test-bucket-{uuid.uuid4().hex[:12]}"


@pytest_asyncio.fixture
async def s3_config(moto_server: str, temp_dir: Path, bucket_name: str):
    """Configuration pointing at a freshly created bucket."""
    from aiobotocore.session import get_session

    from s3backup.config import BackupConfig
    from s3backup.storage import create_s3_client

    config = BackupConfig(
        bucket=bucket_name,
        region="us-east-1",
        access_key_id="testing",
        secret_access_key="testing",
        endpoint_url=moto_server,
        work_dir=temp_dir / "work",
        shutdown_grace_seconds=0,
    )

    async with create_s3_client(config, get_session()) as s3_client:
        await s3_client.create_bucket(Bucket=bucket_name)

    return config


@pytest.fixture
def unconfigured_config(temp_dir: Path):
    """Configuration with no bucket or credentials."""
    from s3backup.config import BackupConfig

    return BackupConfig(work_dir=temp_dir / "work", shutdown_grace_seconds=0)


@pytest.fixture
def backup_request():
    """A valid backup request."""
    from s3backup.exporter import BackupRequest

    return BackupRequest(
        project_id="abc123",
        dataset="production",
        api_version="2021-06-07",
        token="sk-test-token",
        project_name="Acme Site",
    )


class FakeExporter:
    """
    Scriptable stand-in for the content store exporter.

    Records every call and the job status observed while exporting.
    """

    def __init__(
        self,
        payload: bytes = b"archive-bytes" * 100,
        probe_error: Exception | None = None,
        export_error: Exception | None = None,
        write_output: bool = True,
        block: asyncio.Event | None = None,
        status_table=None,
    ):
        self.payload = payload
        self.probe_error = probe_error
        self.export_error = export_error
        self.write_output = write_output
        self.block = block
        self.status_table = status_table
        self.probe_calls: list = []
        self.export_calls: list = []
        self.observed_statuses: list = []

    async def probe(self, request) -> None:
        self.probe_calls.append(request)
        if self.probe_error:
            raise self.probe_error

    async def export(self, request, output_path: Path) -> None:
        self.export_calls.append((request, output_path))

        if self.status_table is not None:
            for job in self.status_table._jobs.values():
                self.observed_statuses.append(job.status)

        if self.write_output:
            output_path.write_bytes(self.payload)

        if self.block is not None:
            await self.block.wait()

        if self.export_error:
            raise self.export_error


@pytest.fixture
def fake_exporter() -> FakeExporter:
    return FakeExporter()


async def drain_jobs(state, timeout: float = 30.0) -> None:
    """Wait until every background job of a state has finished."""
    tasks = list(state["tasks"])
    if tasks:
        await asyncio.wait(tasks, timeout=timeout)
    # Let done callbacks run
    await asyncio.sleep(0)


async def get_s3_object(config, key: str) -> dict:
    """Fetch an object's head and body."""
    from aiobotocore.session import get_session

    from s3backup.storage import create_s3_client

    async with create_s3_client(config, get_session()) as s3_client:
        head = await s3_client.head_object(Bucket=config.bucket, Key=key)
        response = await s3_client.get_object(Bucket=config.bucket, Key=key)
        async with response["Body"] as stream:
            body = await stream.read()
    return {"head": head, "body": body}


async def put_s3_object(config, key: str, body: bytes = b"test content") -> None:
    """Upload a test object."""
    from aiobotocore.session import get_session

    from s3backup.storage import create_s3_client

    async with create_s3_client(config, get_session()) as s3_client:
        await s3_client.put_object(Bucket=config.bucket, Key=key, Body=body)
