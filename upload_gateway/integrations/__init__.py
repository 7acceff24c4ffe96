"""
Integrations package for external services.

This package contains the S3-compatible object storage client (MinIO,
Cloudflare R2, AWS S3) and its exceptions and helpers.
"""

from upload_gateway.integrations.object_storage_client import ObjectStoreClient, StorageConfig

__all__ = [
    "ObjectStoreClient",
    "StorageConfig",
]
