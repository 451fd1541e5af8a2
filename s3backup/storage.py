# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Object storage - aiobotocore helpers for uploading, listing and fetching
archives.

Uploads stream the local file from disk: files smaller than one part go up
in a single PUT, larger files use a multipart upload with a bounded number
of parts in flight, so memory use stays at roughly
``part_size * upload_concurrency``.
"""

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, List

import aiofiles
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from s3backup.config import BackupConfig
from s3backup.exceptions import ArchiveNotFoundError, StorageError, UploadError

logger = structlog.get_logger()

ARCHIVE_CONTENT_TYPE = "application/gzip"

ProgressCallback = Callable[[int, int], None]

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass
class UploadResult:
    """Result of a completed archive upload."""

    bucket: str
    key: str
    etag: str | None
    location: str


def create_s3_client(config: BackupConfig, session: Any) -> Any:
    """
    Create an S3 client context manager from an aiobotocore session.

    Usage:
        async with create_s3_client(config, session) as s3_client:
            ...
    """
    return session.create_client(
        "s3",
        region_name=config.region,
        endpoint_url=config.endpoint_url,
        aws_access_key_id=config.access_key_id or None,
        aws_secret_access_key=config.secret_access_key or None,
    )


def _object_location(config: BackupConfig, key: str) -> str:
    if config.endpoint_url:
        return f"{config.endpoint_url.rstrip('/')}/{config.bucket}/{key}"
    return f"https://{config.bucket}.s3.{config.region}.amazonaws.com/{key}"


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


async def upload_archive(
    config: BackupConfig,
    session: Any,
    path: Path,
    key: str,
    metadata: Dict[str, str],
    on_progress: ProgressCallback | None = None,
) -> UploadResult:
    """
    Upload a local archive to the configured bucket.

    Args:
        config: Backup configuration
        session: aiobotocore session
        path: Local archive path
        key: Destination object key
        metadata: User metadata stored with the object
        on_progress: Called with (loaded_bytes, total_bytes) as data is sent;
            loaded_bytes never decreases

    Returns:
        UploadResult with the stored key and ETag

    Raises:
        UploadError: If the transfer fails
    """
    total = path.stat().st_size

    logger.info(
        "upload_started",
        bucket=config.bucket,
        key=key,
        size_mb=round(total / (1024 * 1024), 2),
    )

    try:
        async with create_s3_client(config, session) as s3_client:
            if total < config.part_size:
                etag = await _put_single(s3_client, config, path, key, metadata)
                if on_progress:
                    on_progress(total, total)
            else:
                etag = await _put_multipart(
                    s3_client, config, path, key, metadata, total, on_progress
                )
    except UploadError:
        raise
    except (ClientError, BotoCoreError, OSError) as e:
        raise UploadError(
            f"Failed to upload archive: {e}",
            details={"bucket": config.bucket, "key": key},
        ) from e

    logger.info("upload_completed", bucket=config.bucket, key=key, etag=etag)

    return UploadResult(
        bucket=config.bucket,
        key=key,
        etag=etag,
        location=_object_location(config, key),
    )


async def _put_single(
    s3_client: Any,
    config: BackupConfig,
    path: Path,
    key: str,
    metadata: Dict[str, str],
) -> str | None:
    async with aiofiles.open(path, "rb") as f:
        body = await f.read()

    response = await s3_client.put_object(
        Bucket=config.bucket,
        Key=key,
        Body=body,
        ContentType=ARCHIVE_CONTENT_TYPE,
        Metadata=metadata,
    )
    return response.get("ETag")


async def _put_multipart(
    s3_client: Any,
    config: BackupConfig,
    path: Path,
    key: str,
    metadata: Dict[str, str],
    total: int,
    on_progress: ProgressCallback | None,
) -> str | None:
    """Multipart upload with at most upload_concurrency parts in flight."""
    created = await s3_client.create_multipart_upload(
        Bucket=config.bucket,
        Key=key,
        ContentType=ARCHIVE_CONTENT_TYPE,
        Metadata=metadata,
    )
    upload_id = created["UploadId"]

    semaphore = asyncio.Semaphore(config.upload_concurrency)
    parts: List[Dict[str, Any]] = []
    tasks: List[asyncio.Task] = []
    loaded = 0

    async def send_part(part_number: int, chunk: bytes) -> None:
        nonlocal loaded
        try:
            response = await s3_client.upload_part(
                Bucket=config.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=chunk,
            )
        finally:
            semaphore.release()

        parts.append({"PartNumber": part_number, "ETag": response["ETag"]})
        loaded += len(chunk)
        if on_progress:
            on_progress(loaded, total)

    try:
        async with aiofiles.open(path, "rb") as f:
            part_number = 1
            while True:
                # Acquire before reading so buffered parts stay bounded
                await semaphore.acquire()
                chunk = await f.read(config.part_size)
                if not chunk:
                    semaphore.release()
                    break
                tasks.append(asyncio.create_task(send_part(part_number, chunk)))
                part_number += 1

                failed = [t for t in tasks if t.done() and t.exception()]
                if failed:
                    raise failed[0].exception()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        parts.sort(key=lambda p: p["PartNumber"])
        completed = await s3_client.complete_multipart_upload(
            Bucket=config.bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": parts},
        )
        return completed.get("ETag")

    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await _abort_multipart(s3_client, config, key, upload_id)
        raise


async def _abort_multipart(
    s3_client: Any, config: BackupConfig, key: str, upload_id: str
) -> None:
    try:
        await s3_client.abort_multipart_upload(
            Bucket=config.bucket, Key=key, UploadId=upload_id
        )
        logger.info("multipart_upload_aborted", key=key, upload_id=upload_id)
    except (ClientError, BotoCoreError) as e:
        logger.warning("multipart_abort_failed", key=key, error=str(e))


async def list_objects(config: BackupConfig, session: Any) -> List[Dict[str, Any]]:
    """
    List all objects in the bucket.

    Raises:
        StorageError: If the listing fails
    """
    objects: List[Dict[str, Any]] = []

    try:
        async with create_s3_client(config, session) as s3_client:
            paginator = s3_client.get_paginator("list_objects_v2")

            async for page in paginator.paginate(
                Bucket=config.bucket,
                PaginationConfig={"PageSize": config.list_page_size},
            ):
                objects.extend(page.get("Contents", []))
    except (ClientError, BotoCoreError) as e:
        raise StorageError(
            f"Failed to list bucket: {e}",
            details={"bucket": config.bucket},
        ) from e

    return objects


@dataclass
class ObjectStream:
    """
    An open object body.

    Iterate chunks once; the stream closes itself when exhausted. Callers
    that may stop early must call aclose().
    """

    key: str
    content_length: int | None
    chunks: AsyncGenerator[bytes, None]
    client_stack: AsyncExitStack | None = field(default=None, repr=False)

    async def aclose(self) -> None:
        """Release the body and the S3 client. Safe to call more than once."""
        await self.chunks.aclose()
        if self.client_stack is not None:
            await self.client_stack.aclose()


async def open_object(config: BackupConfig, session: Any, key: str) -> ObjectStream:
    """
    Start fetching an object without buffering it.

    The S3 client stays open until the returned stream is exhausted or
    closed.

    Raises:
        ArchiveNotFoundError: If the key does not exist
        StorageError: If the fetch fails for any other reason
    """
    async with AsyncExitStack() as stack:
        s3_client = await stack.enter_async_context(create_s3_client(config, session))

        try:
            response = await s3_client.get_object(Bucket=config.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ArchiveNotFoundError(
                    f"Backup file not found: {key}",
                    details={"bucket": config.bucket, "key": key},
                ) from e
            raise StorageError(
                f"Failed to fetch backup file: {e}",
                details={"bucket": config.bucket, "key": key},
            ) from e
        except BotoCoreError as e:
            raise StorageError(
                f"Failed to fetch backup file: {e}",
                details={"bucket": config.bucket, "key": key},
            ) from e

        # Hand the open client over to the chunk iterator
        client_stack = stack.pop_all()

    async def iter_chunks() -> AsyncGenerator[bytes, None]:
        try:
            async with response["Body"] as stream:
                async for chunk in stream.iter_chunks(config.download_chunk_size):
                    yield chunk
        finally:
            await client_stack.aclose()

    return ObjectStream(
        key=key,
        content_length=response.get("ContentLength"),
        chunks=iter_chunks(),
        client_stack=client_stack,
    )


def build_metadata(project_id: str, dataset: str) -> Dict[str, str]:
    """User metadata attached to every archive."""
    return {
        "projectid": project_id,
        "dataset": dataset,
        "exportdate": datetime.now(UTC).isoformat(),
    }
