"""
Storage Initialization Script

Create the upload bucket if needed and verify connectivity.

Usage:
    python -m upload_gateway.scripts.init_storage
    python -m upload_gateway.scripts.init_storage --verify-only
    python -m upload_gateway.scripts.init_storage --verbose
"""

import asyncio
import logging
import sys

import click
import structlog

from upload_gateway.core.config import get_settings
from upload_gateway.integrations.object_storage_client import ObjectStoreClient, StorageConfig
from upload_gateway.integrations.storage_exceptions import StoreConnectionError, StorageError
from upload_gateway.integrations.storage_utils import format_storage_size
from upload_gateway.services.folder_policy import DEFAULT_POLICIES

logger = structlog.get_logger(__name__)


async def _run(config: StorageConfig, verify_only: bool) -> bool:
    """Returns True when the bucket was created by this run."""
    client = ObjectStoreClient(config)
    try:
        if verify_only:
            await client.head_bucket()
            return False
        return await client.ensure_bucket()
    finally:
        await client.close()


@click.command()
@click.option(
    "--verify-only",
    is_flag=True,
    help="Only verify bucket access without creating it",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)
def init_storage(verify_only: bool, verbose: bool) -> None:
    """
    Initialize the upload bucket and verify connectivity.

    Every upload folder (Profiles, Thumbnails, Images, Documents, Uploads)
    is a key prefix inside the one configured bucket.
    """
    # Configure logging
    if verbose:
        structlog.configure(
            wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG)
        )

    click.echo("=" * 70)
    click.echo("Upload Gateway - Object Storage Initialization")
    click.echo("=" * 70)
    click.echo()

    try:
        # Load configuration
        click.echo("Loading configuration from environment...")
        settings = get_settings()
        config = StorageConfig.from_settings(settings)
        config.validate()

        click.echo(f"  Endpoint: {config.endpoint_url}")
        click.echo(f"  Region: {config.region}")
        click.echo(f"  SSL: {config.use_ssl}")
        click.echo(f"  Path-style addressing: {config.force_path_style}")
        click.echo(f"  Bucket: {config.bucket}")
        click.echo()

        if verify_only:
            click.echo("Verifying bucket access...")
            asyncio.run(_run(config, verify_only=True))
            click.echo(f"  ✓ {config.bucket} - accessible")
            click.echo()
            click.echo("✓ Bucket is accessible")
            sys.exit(0)

        click.echo("Ensuring storage bucket exists...")
        created = asyncio.run(_run(config, verify_only=False))
        status = "created" if created else "already exists"
        symbol = "+" if created else "•"
        click.echo(f"  {symbol} {config.bucket} ({status})")

        click.echo()
        click.echo("=" * 70)
        click.echo("✓ Storage initialization completed successfully")
        click.echo("=" * 70)
        click.echo()
        click.echo("Folders:")
        for policy in DEFAULT_POLICIES.values():
            mediated = " (server-mediated)" if policy.server_mediated else ""
            click.echo(
                f"  {policy.category.value}/  max {format_storage_size(policy.max_size_bytes)}{mediated}"
            )
        click.echo()
        click.echo("Configuration Summary:")
        click.echo(f"  Direct upload threshold: {format_storage_size(settings.direct_upload_threshold_bytes)}")
        click.echo(f"  Multipart part size: {format_storage_size(settings.multipart_part_size_bytes)}")
        click.echo(f"  Presigned URL Expiration: {settings.presigned_url_expiration}s")
        click.echo()

        sys.exit(0)

    except StoreConnectionError as e:
        click.echo()
        click.echo("=" * 70, err=True)
        click.echo("✗ Connection Error", err=True)
        click.echo("=" * 70, err=True)
        click.echo(str(e), err=True)
        click.echo()
        click.echo("Troubleshooting:", err=True)
        click.echo("  1. Ensure the MinIO/S3 service is running", err=True)
        click.echo("  2. Verify STORAGE_ENDPOINT and STORAGE_PORT in .env file", err=True)
        click.echo("  3. Check network connectivity to storage endpoint", err=True)
        click.echo()
        sys.exit(1)

    except StorageError as e:
        click.echo()
        click.echo("=" * 70, err=True)
        click.echo("✗ Bucket Operation Error", err=True)
        click.echo("=" * 70, err=True)
        click.echo(str(e), err=True)
        click.echo()
        click.echo("Troubleshooting:", err=True)
        click.echo("  1. Verify STORAGE_ACCESS_KEY and STORAGE_SECRET_KEY", err=True)
        click.echo("  2. Check bucket permissions", err=True)
        click.echo("  3. Run without --verify-only to create the bucket", err=True)
        click.echo()
        sys.exit(1)

    except ValueError as e:
        click.echo()
        click.echo("=" * 70, err=True)
        click.echo("✗ Configuration Error", err=True)
        click.echo("=" * 70, err=True)
        click.echo(str(e), err=True)
        click.echo()
        click.echo("Please ensure the storage variables are set in .env file:", err=True)
        click.echo("  - STORAGE_ENDPOINT", err=True)
        click.echo("  - STORAGE_ACCESS_KEY", err=True)
        click.echo("  - STORAGE_SECRET_KEY", err=True)
        click.echo("  - STORAGE_BUCKET", err=True)
        click.echo()
        sys.exit(1)


if __name__ == "__main__":
    init_storage()
