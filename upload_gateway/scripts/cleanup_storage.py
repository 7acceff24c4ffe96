"""
Storage Cleanup Script

Purge aged objects, abort abandoned multipart uploads and sweep leftover
staging files.

Usage:
    python -m upload_gateway.scripts.cleanup_storage purge Uploads --older-than-days 30
    python -m upload_gateway.scripts.cleanup_storage purge Images --older-than-days 90 --dry-run
    python -m upload_gateway.scripts.cleanup_storage abort-multipart Documents --older-than-hours 24
    python -m upload_gateway.scripts.cleanup_storage sweep-staging --max-age-seconds 3600

Scheduling:
    Add to crontab for automated cleanup:
    # Run daily at 2 AM
    0 2 * * * cd /app && python -m upload_gateway.scripts.cleanup_storage purge Uploads --older-than-days 30 --force
"""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
import structlog

from upload_gateway.core.config import get_settings
from upload_gateway.integrations.object_storage_client import ObjectStoreClient, StorageConfig
from upload_gateway.integrations.storage_exceptions import StorageError
from upload_gateway.models.enums import FolderCategory
from upload_gateway.services.temp_artifact_janitor import TempArtifactJanitor

logger = structlog.get_logger(__name__)

CATEGORY_CHOICE = click.Choice([c.value for c in FolderCategory])


async def _with_janitor(action: Callable[[TempArtifactJanitor], Awaitable[Any]]) -> Any:
    settings = get_settings()
    client = ObjectStoreClient(StorageConfig.from_settings(settings))
    try:
        janitor = TempArtifactJanitor(
            client,
            staging_dir=settings.temp_upload_dir,
            chunk_size=settings.staging_chunk_size,
        )
        return await action(janitor)
    finally:
        await client.close()


def _configure_verbose(verbose: bool) -> None:
    if verbose:
        structlog.configure(
            wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG)
        )


def _fail(title: str, error: Exception) -> None:
    click.echo()
    click.echo("=" * 70, err=True)
    click.echo(f"✗ {title}", err=True)
    click.echo("=" * 70, err=True)
    click.echo(str(error), err=True)
    click.echo()
    sys.exit(1)


@click.group()
def cli():
    """Storage cleanup and maintenance utilities."""
    pass


@cli.command()
@click.argument("category", type=CATEGORY_CHOICE)
@click.option(
    "--older-than-days",
    type=click.FloatRange(min=0),
    default=None,
    help="Delete objects last modified more than this many days ago (defaults to RETENTION_DAYS)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Preview deletions without executing",
)
@click.option(
    "--force",
    is_flag=True,
    help="Skip confirmation prompts",
)
@click.option(
    "--report",
    type=click.Path(),
    help="Save detailed JSON report to file",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)
def purge(
    category: str,
    older_than_days: Optional[float],
    dry_run: bool,
    force: bool,
    report: Optional[str],
    verbose: bool,
) -> None:
    """
    Delete objects in CATEGORY older than the given age.

    CATEGORY: Folder to purge (Profiles, Thumbnails, Documents, Images, Uploads)
    """
    _configure_verbose(verbose)
    folder = FolderCategory(category)
    age_days = older_than_days if older_than_days is not None else get_settings().retention_days

    click.echo("=" * 70)
    click.echo("Upload Gateway - Storage Purge")
    click.echo("=" * 70)
    click.echo()

    if dry_run:
        click.echo("[DRY RUN MODE - No files will be deleted]")
        click.echo()

    click.echo(f"Purging {folder.value}/ objects older than {age_days:g} days...")
    if not force and not dry_run:
        click.confirm(f"  Delete {folder.value} objects older than {age_days:g} days?", abort=True)

    try:
        result = asyncio.run(
            _with_janitor(lambda janitor: janitor.purge_older_than(folder, age_days, dry_run=dry_run))
        )
    except StorageError as e:
        _fail("Purge Error", e)

    verb = "Would delete" if dry_run else "Deleted"
    click.echo(f"  ✓ {verb} {result.deleted_count} objects")
    for key, reason in result.failed_keys.items():
        click.echo(f"  ✗ {key}: {reason}", err=True)
    click.echo()

    if report:
        report_path = Path(report)
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": "purge",
            **result.to_dict(),
        }
        with open(report_path, "w") as f:
            json.dump(payload, f, indent=2, default=str)
        click.echo(f"✓ Report saved to: {report_path}")
        click.echo()

    click.echo("=" * 70)
    if result.failed_keys:
        click.echo(f"✗ Purge finished with {len(result.failed_keys)} failed deletions", err=True)
        click.echo("=" * 70)
        sys.exit(1)
    click.echo("✓ Purge completed successfully")
    click.echo("=" * 70)
    sys.exit(0)


@cli.command("abort-multipart")
@click.argument("category", type=CATEGORY_CHOICE)
@click.option(
    "--older-than-hours",
    type=click.FloatRange(min=0),
    default=24,
    show_default=True,
    help="Abort multipart uploads started more than this many hours ago",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)
def abort_multipart(category: str, older_than_hours: float, verbose: bool) -> None:
    """
    Abort multipart uploads left open in CATEGORY.

    CATEGORY: Folder to scan
    """
    _configure_verbose(verbose)
    folder = FolderCategory(category)
    click.echo(f"Aborting {folder.value}/ multipart uploads older than {older_than_hours:g} hours...")

    try:
        result = asyncio.run(
            _with_janitor(
                lambda janitor: janitor.abort_stale_multipart_uploads(folder, older_than_hours)
            )
        )
    except StorageError as e:
        _fail("Multipart Abort Error", e)

    click.echo(f"  ✓ Aborted {len(result['aborted'])} uploads")
    for key, reason in result["failed"].items():
        click.echo(f"  ✗ {key}: {reason}", err=True)
    sys.exit(1 if result["failed"] else 0)


@cli.command("sweep-staging")
@click.option(
    "--max-age-seconds",
    type=click.FloatRange(min=0),
    default=3600,
    show_default=True,
    help="Remove staged files older than this",
)
def sweep_staging(max_age_seconds: float) -> None:
    """Remove staging files left behind by interrupted uploads."""
    settings = get_settings()
    janitor = TempArtifactJanitor(
        ObjectStoreClient(StorageConfig.from_settings(settings)),
        staging_dir=settings.temp_upload_dir,
    )
    removed = janitor.sweep_staging_dir(max_age_seconds)
    click.echo(f"✓ Removed {removed} staged files from {janitor.staging_dir}")
    sys.exit(0)


if __name__ == "__main__":
    cli()
