# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Backup FastAPI Integration - HTTP surface of the backup service.

Endpoints (default prefix ``/api``):

- GET  /backup/{projectId}/{dataset}/{apiVersion}/{token}/{projectName}
- POST /backup                      (same, parameters in a JSON body)
- GET  /backup/status/{backupId}
- GET  /backups/list
- GET  /backups/download/{key}
- GET  /health

The GET form of the backup trigger carries the access token in the URL,
where proxies and access logs can record it. Prefer the POST form.
"""

from contextlib import asynccontextmanager
from datetime import datetime, UTC
from urllib.parse import quote

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.types import Receive, Scope, Send

from s3backup.archives import list_archives, open_archive
from s3backup.config import BackupConfig
from s3backup.core import (
    BackupState,
    get_status,
    initialize_backup_state,
    shutdown_backup_state,
    start_backup,
)
from s3backup.env import create_config_from_env
from s3backup.exceptions import (
    ArchiveNotFoundError,
    BackupNotFoundError,
    BackupServiceError,
    ConfigurationError,
    InvalidRequestError,
    StorageError,
)
from s3backup.exporter import BackupRequest, Exporter
from s3backup.naming import download_filename
from s3backup.storage import ARCHIVE_CONTENT_TYPE, ObjectStream

logger = structlog.get_logger()


class BackupRequestBody(BaseModel):
    """JSON body for POST /backup."""

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    dataset: str
    api_version: str = Field(alias="apiVersion")
    token: str = Field(repr=False)
    project_name: str = Field(alias="projectName")


def content_disposition(filename: str) -> str:
    """
    Attachment header for a download.

    Names that are not plain ASCII tokens are sent in the RFC 5987
    ``filename*`` form, as starlette's FileResponse does.
    """
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


class ArchiveStreamingResponse(StreamingResponse):
    """Streams an ObjectStream and closes it however the response ends."""

    def __init__(self, stream: ObjectStream, **kwargs) -> None:
        super().__init__(stream.chunks, **kwargs)
        self.object_stream = stream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.object_stream.aclose()


def _error_response(error: BackupServiceError) -> JSONResponse:
    """Map a read-side error to an HTTP response."""
    if isinstance(error, InvalidRequestError):
        status_code = 400
    elif isinstance(error, ArchiveNotFoundError):
        status_code = 404
    elif isinstance(error, ConfigurationError):
        status_code = 500
    elif isinstance(error, StorageError):
        status_code = 502
    else:
        status_code = 500

    return JSONResponse(
        status_code=status_code,
        content={"error": error.message, "details": error.details or None},
    )


def register_backup_routes(
    app: FastAPI,
    state: BackupState,
    prefix: str = "/api",
) -> None:
    """
    Register backup endpoints on a FastAPI app.

    Args:
        app: FastAPI application
        state: Runtime state
        prefix: URL prefix for endpoints (default: /api)
    """

    def _start(request_args: dict) -> JSONResponse:
        try:
            request = BackupRequest(**request_args)
        except InvalidRequestError as e:
            return JSONResponse(
                status_code=400,
                content={"status": "ERROR", "message": e.message},
            )

        backup_id = start_backup(state, request)
        return JSONResponse(
            content={
                "status": "OK",
                "message": "Backup started",
                "backupId": backup_id,
            }
        )

    @app.get(
        f"{prefix}/backup/{{project_id}}/{{dataset}}/{{api_version}}/{{token}}/{{project_name}}"
    )
    async def start_backup_from_path(
        project_id: str,
        dataset: str,
        api_version: str,
        token: str,
        project_name: str,
    ) -> JSONResponse:
        """
        Start a backup; returns immediately with the backup id.
        """
        return _start(
            {
                "project_id": project_id,
                "dataset": dataset,
                "api_version": api_version,
                "token": token,
                "project_name": project_name,
            }
        )

    @app.post(f"{prefix}/backup")
    async def start_backup_from_body(body: BackupRequestBody) -> JSONResponse:
        """
        Start a backup with parameters in the request body.
        """
        return _start(body.model_dump())

    @app.get(f"{prefix}/backup/status/{{backup_id}}")
    async def backup_status(backup_id: str) -> JSONResponse:
        """
        Get the current status of a backup.
        """
        try:
            view = get_status(state, backup_id)
        except BackupNotFoundError:
            return JSONResponse(
                status_code=404,
                content={"status": "ERROR", "message": "Backup not found"},
            )
        return JSONResponse(content=view.to_dict())

    @app.get(f"{prefix}/backups/list")
    async def list_backups() -> JSONResponse:
        """
        List stored archives, newest first.
        """
        try:
            archives = await list_archives(state)
        except BackupServiceError as e:
            logger.error("archive_listing_failed", error=str(e))
            return _error_response(e)

        config = state["config"]
        return JSONResponse(
            content={
                "backups": [archive.to_dict() for archive in archives],
                "totalCount": len(archives),
                "bucket": config.bucket,
                "region": config.region,
            }
        )

    @app.get(f"{prefix}/backups/download/{{key:path}}", response_model=None)
    async def download_backup(key: str) -> StreamingResponse | JSONResponse:
        """
        Stream a stored archive as an attachment.
        """
        try:
            stream = await open_archive(state, key)
        except BackupServiceError as e:
            logger.error("archive_download_failed", key=key, error=str(e))
            return _error_response(e)

        headers = {"Content-Disposition": content_disposition(download_filename(key))}
        if stream.content_length is not None:
            headers["Content-Length"] = str(stream.content_length)

        return ArchiveStreamingResponse(
            stream,
            media_type=ARCHIVE_CONTENT_TYPE,
            headers=headers,
        )

    @app.get(f"{prefix}/health")
    async def health_check() -> dict:
        """
        Liveness check.
        """
        return {"status": "OK", "timestamp": datetime.now(UTC).isoformat()}


def create_app(
    config: BackupConfig | None = None,
    exporter: Exporter | None = None,
) -> FastAPI:
    """
    Build the backup service application.

    Args:
        config: Backup configuration (default: read from the environment)
        exporter: Content store exporter (default: SanityExporter)

    Returns:
        FastAPI application; running jobs get a grace period on shutdown
    """
    if config is None:
        config = create_config_from_env()

    state = initialize_backup_state(config, exporter)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "backup_service_starting",
            region=config.region,
            bucket=config.bucket or None,
            missing_settings=config.missing_storage_settings(),
        )
        try:
            yield
        finally:
            logger.info("backup_service_stopping")
            await shutdown_backup_state(state)
            logger.info("backup_service_stopped")

    app = FastAPI(
        title="S3 Backup",
        description="Export content store datasets and keep the archives in S3",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.backup_state = state

    register_backup_routes(app, state)

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "S3 Backup Service - see /api/health"

    return app


def get_backup_state(app: FastAPI) -> BackupState:
    """
    Get backup runtime state from a FastAPI app.

    Raises:
        RuntimeError: If the app was not built by create_app
    """
    state = getattr(app.state, "backup_state", None)
    if not state:
        raise RuntimeError("Backup state not initialized. Build the app with create_app().")
    return state
