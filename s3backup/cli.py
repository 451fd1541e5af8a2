# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command line interface for the backup service.

    s3backup serve                      run the HTTP service
    s3backup list                       list stored archives
    s3backup download KEY               download one archive
    s3backup backup PROJECT_ID DATASET API_VERSION PROJECT_NAME --token ...
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import quote

import click
import httpx
import structlog

from s3backup.exceptions import BackupServiceError
from s3backup.exporter import BackupRequest
from s3backup.naming import download_filename
from s3backup.poller import PollPolicy, poll_backup, request_backup

DEFAULT_API_BASE = "http://localhost:3001"
DEFAULT_DOWNLOAD_DIR = Path("./backup-downloads")


def configure_logging(verbose: bool = False) -> None:
    """Configure stdlib logging and structlog for console output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def _client(ctx: click.Context, **kwargs: Any) -> httpx.Client:
    return httpx.Client(
        base_url=ctx.obj["api_base"],
        transport=ctx.obj.get("transport"),
        **kwargs,
    )


def _fail(ctx: click.Context, message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    ctx.exit(1)


@click.group()
@click.option(
    "--api-base",
    envvar="BACKUP_API_BASE",
    default=DEFAULT_API_BASE,
    show_default=True,
    help="Base URL of the backup service",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, api_base: str, verbose: bool) -> None:
    """Back up content store datasets to S3 and manage the archives."""
    ctx.ensure_object(dict)
    ctx.obj["api_base"] = api_base.rstrip("/")
    configure_logging(verbose=verbose)


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=3001, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the backup HTTP service."""
    import uvicorn

    from s3backup.integrations.fastapi import create_app

    uvicorn.run(create_app(), host=host, port=port)


def _group_by_month(backups: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for backup in backups:
        date = backup.get("date") or ""
        groups[date[:7] if len(date) >= 7 else "unknown"].append(backup)
    return groups


def _month_label(month_key: str) -> str:
    try:
        return datetime.strptime(month_key, "%Y-%m").strftime("%B %Y")
    except ValueError:
        return "Undated"


@cli.command(name="list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List stored archives grouped by month."""
    try:
        with _client(ctx, timeout=60.0) as client:
            response = client.get("/api/backups/list")
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        _fail(ctx, f"could not fetch backup list: {e}")
        return

    if response.status_code != 200:
        _fail(ctx, f"could not fetch backup list: {payload.get('error', payload)}")
        return

    backups = payload.get("backups", [])
    click.echo(
        f"Found {payload.get('totalCount', len(backups))} backup files in bucket: "
        f"{payload.get('bucket')} ({payload.get('region')})"
    )
    click.echo("=" * 80)

    if not backups:
        click.echo("No backup files found.")
        return

    groups = _group_by_month(backups)
    for month_key in sorted(groups, reverse=True):
        entries = groups[month_key]
        click.echo(f"\n{_month_label(month_key)} ({len(entries)} backups)")
        click.echo("-" * 50)
        for index, backup in enumerate(entries, start=1):
            click.echo(f"{index}. {backup.get('projectName')} ({backup.get('dataset')})")
            click.echo(f"   {backup['key']}")
            click.echo(f"   {backup.get('sizeMB')} MB | {backup.get('lastModified') or 'Unknown'}")
            click.echo(
                f"   Download: {ctx.obj['api_base']}/api/backups/download/"
                f"{quote(backup['key'], safe='')}"
            )

    click.echo("\nTo download a backup run: s3backup download <key>")


@cli.command()
@click.argument("key")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_DOWNLOAD_DIR,
    show_default=True,
)
@click.pass_context
def download(ctx: click.Context, key: str, output_dir: Path) -> None:
    """Download the archive stored under KEY."""
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / download_filename(key)

    try:
        with _client(ctx, timeout=None) as client:
            with client.stream("GET", f"/api/backups/download/{quote(key, safe='')}") as response:
                if response.status_code != 200:
                    response.read()
                    try:
                        reason = response.json().get("error", response.text)
                    except ValueError:
                        reason = response.text
                    _fail(ctx, f"download failed with status {response.status_code}: {reason}")
                    return

                total = int(response.headers.get("content-length", 0))
                with open(target, "wb") as out:
                    if total:
                        with click.progressbar(
                            length=total, label=f"Downloading {target.name}"
                        ) as bar:
                            for chunk in response.iter_bytes():
                                out.write(chunk)
                                bar.update(len(chunk))
                    else:
                        for chunk in response.iter_bytes():
                            out.write(chunk)
    except (httpx.HTTPError, OSError) as e:
        target.unlink(missing_ok=True)
        _fail(ctx, f"download failed: {e}")
        return

    click.echo(f"Saved {target} ({target.stat().st_size / (1024 * 1024):.2f} MB)")


async def _backup_and_wait(
    ctx: click.Context,
    request: BackupRequest,
    policy: PollPolicy,
) -> None:
    def show(payload: Dict[str, Any]) -> None:
        click.echo(f"  {payload.get('status')}: {payload.get('message')}")

    async with httpx.AsyncClient(
        base_url=ctx.obj["api_base"],
        transport=ctx.obj.get("transport"),
        timeout=60.0,
    ) as client:
        backup_id = await request_backup(client, request)
        click.echo(f"Backup started: {backup_id}")

        outcome = await poll_backup(client, backup_id, policy, on_update=show)

    if outcome.succeeded:
        click.echo(f"Backup completed: {outcome.location} (etag {outcome.etag})")
    else:
        _fail(ctx, f"backup failed: {outcome.error or outcome.message}")


@cli.command()
@click.argument("project_id")
@click.argument("dataset")
@click.argument("api_version")
@click.argument("project_name")
@click.option("--token", envvar="SANITY_TOKEN", required=True, help="Content store access token")
@click.option("--initial-delay", default=10.0, show_default=True, help="Seconds before the first status check")
@click.option("--interval", default=30.0, show_default=True, help="Seconds between status checks")
@click.option("--backoff", default=1.5, show_default=True, help="Interval multiplier per check")
@click.option("--timeout", default=6 * 3600.0, show_default=True, help="Give up after this many seconds")
@click.pass_context
def backup(
    ctx: click.Context,
    project_id: str,
    dataset: str,
    api_version: str,
    project_name: str,
    token: str,
    initial_delay: float,
    interval: float,
    backoff: float,
    timeout: float,
) -> None:
    """Start a backup and wait until it finishes."""
    policy = PollPolicy(
        initial_delay=initial_delay,
        interval=interval,
        backoff=backoff,
        timeout=timeout,
    )

    try:
        request = BackupRequest(
            project_id=project_id,
            dataset=dataset,
            api_version=api_version,
            token=token,
            project_name=project_name,
        )
        asyncio.run(_backup_and_wait(ctx, request, policy))
    except (BackupServiceError, httpx.HTTPError) as e:
        _fail(ctx, str(e))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
