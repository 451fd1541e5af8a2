# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Content store exporter - Serialize a project's documents and assets to a
local tarball.

The orchestrator only depends on the ``Exporter`` protocol; the default
implementation talks to the Sanity HTTP API:

- the probe runs a trivial GROQ query to prove the token and dataset work
- the export streams the NDJSON export endpoint, downloads every image and
  file asset it references, and packs everything into a ``.tar.gz``
"""

import asyncio
import functools
import json
import re
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Protocol
from urllib.parse import urlparse

import aiofiles
import httpx
import structlog

from s3backup.exceptions import ExportError, InvalidRequestError, UpstreamConnectivityError

logger = structlog.get_logger()

PROBE_QUERY = '*[_type == "sanity.imageAsset"][0]'

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")

_ASSET_FOLDERS = {
    "sanity.imageAsset": "images",
    "sanity.fileAsset": "files",
}


@dataclass(frozen=True)
class BackupRequest:
    """Parameters identifying the project and dataset to back up."""

    project_id: str
    dataset: str
    api_version: str
    token: str = field(repr=False)
    project_name: str

    def __post_init__(self) -> None:
        for name in ("project_id", "dataset"):
            value = getattr(self, name)
            if not _IDENTIFIER_RE.match(value):
                raise InvalidRequestError(
                    f"Invalid {name}: {value!r}",
                    details={"field": name},
                )
        if not self.token:
            raise InvalidRequestError("Access token is required", details={"field": "token"})


@dataclass(frozen=True)
class _AssetRef:
    url: str
    folder: str
    filename: str


class Exporter(Protocol):
    """Anything able to probe a content store and export it to a file."""

    async def probe(self, request: BackupRequest) -> None:
        ...

    async def export(self, request: BackupRequest, output_path: Path) -> None:
        ...


def _api_version_segment(api_version: str) -> str:
    return api_version if api_version.startswith("v") else f"v{api_version}"


def _archive_root_name(output_path: Path) -> str:
    name = output_path.name
    for suffix in (".tar.gz", ".tgz"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return output_path.stem


def _write_tarball(staging_dir: Path, output_path: Path, root_name: str) -> None:
    with tarfile.open(output_path, "w:gz") as tar:
        tar.add(staging_dir, arcname=root_name)


class SanityExporter:
    """
    Exporter backed by the Sanity HTTP API.

    Args:
        timeout: Per-request timeout in seconds
        asset_concurrency: Maximum asset downloads in flight
        transport: Optional httpx transport (tests inject a MockTransport)
    """

    def __init__(
        self,
        timeout: float = 300.0,
        asset_concurrency: int = 12,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.asset_concurrency = asset_concurrency
        self._transport = transport

    def _client(self, request: BackupRequest) -> httpx.AsyncClient:
        base_url = (
            f"https://{request.project_id}.api.sanity.io/"
            f"{_api_version_segment(request.api_version)}"
        )
        return httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {request.token}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def probe(self, request: BackupRequest) -> None:
        """
        Run a trivial query against the dataset.

        Raises:
            UpstreamConnectivityError: If the content store is unreachable or
                rejects the request
        """
        try:
            async with self._client(request) as client:
                response = await client.get(
                    f"/data/query/{request.dataset}",
                    params={"query": PROBE_QUERY},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamConnectivityError(
                f"Failed to connect to Sanity: {e}",
                details={"project_id": request.project_id, "dataset": request.dataset},
            ) from e

        logger.info(
            "content_store_probe_ok",
            project_id=request.project_id,
            dataset=request.dataset,
        )

    async def export(self, request: BackupRequest, output_path: Path) -> None:
        """
        Export documents and assets into a gzip tarball at output_path.

        Raises:
            ExportError: If any export request fails or returns bad data
        """
        root_name = _archive_root_name(output_path)
        staging_dir = output_path.parent / f".{root_name}.staging"
        loop = asyncio.get_running_loop()
        if staging_dir.exists():
            await loop.run_in_executor(None, shutil.rmtree, staging_dir)
        for folder in ("images", "files"):
            (staging_dir / folder).mkdir(parents=True, exist_ok=True)

        try:
            async with self._client(request) as client:
                assets = await self._export_documents(
                    client, request, staging_dir / "data.ndjson"
                )
                await self._download_assets(client, assets, staging_dir)

            # Compression is CPU-bound; keep it off the event loop
            await loop.run_in_executor(
                None, _write_tarball, staging_dir, output_path, root_name
            )

        except httpx.HTTPError as e:
            raise ExportError(
                f"Export failed: {e}",
                details={"project_id": request.project_id, "dataset": request.dataset},
            ) from e
        except OSError as e:
            raise ExportError(
                f"Failed to write export archive: {e}",
                details={"output_path": str(output_path)},
            ) from e
        finally:
            await loop.run_in_executor(
                None, functools.partial(shutil.rmtree, staging_dir, ignore_errors=True)
            )

        logger.info(
            "export_written",
            output_path=str(output_path),
            assets=len(assets),
        )

    async def _export_documents(
        self,
        client: httpx.AsyncClient,
        request: BackupRequest,
        ndjson_path: Path,
    ) -> List[_AssetRef]:
        """Stream the NDJSON export to disk and collect asset references."""
        assets: List[_AssetRef] = []
        documents = 0

        async with client.stream("GET", f"/data/export/{request.dataset}") as response:
            response.raise_for_status()

            async with aiofiles.open(ndjson_path, "w", encoding="utf-8") as out:
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue

                    try:
                        document = json.loads(line)
                    except json.JSONDecodeError as e:
                        raise ExportError(
                            f"Malformed export line: {e}",
                            details={"line_number": documents + 1},
                        ) from e

                    await out.write(line.rstrip("\n") + "\n")
                    documents += 1

                    folder = _ASSET_FOLDERS.get(document.get("_type", ""))
                    url = document.get("url")
                    if folder and url:
                        filename = Path(urlparse(url).path).name or document.get("_id", "asset")
                        assets.append(_AssetRef(url=url, folder=folder, filename=filename))

        logger.info(
            "documents_exported",
            project_id=request.project_id,
            dataset=request.dataset,
            documents=documents,
            assets=len(assets),
        )
        return assets

    async def _download_assets(
        self,
        client: httpx.AsyncClient,
        assets: List[_AssetRef],
        staging_dir: Path,
    ) -> None:
        """Download assets with bounded concurrency."""
        semaphore = asyncio.Semaphore(self.asset_concurrency)

        async def fetch(asset: _AssetRef) -> None:
            async with semaphore:
                target = staging_dir / asset.folder / asset.filename
                async with client.stream("GET", asset.url) as response:
                    response.raise_for_status()
                    async with aiofiles.open(target, "wb") as out:
                        async for chunk in response.aiter_bytes():
                            await out.write(chunk)

                logger.debug("asset_downloaded", url=asset.url)

        results = await asyncio.gather(
            *[fetch(asset) for asset in assets], return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
