"""Object existence and metadata lookups."""
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import structlog

from upload_gateway.integrations.object_storage_client import ObjectStoreClient
from upload_gateway.integrations.storage_exceptions import ObjectNotFoundError
from upload_gateway.integrations.storage_utils import decode_user_metadata
from upload_gateway.models.enums import FolderCategory
from upload_gateway.models.upload import ObjectMetadata

logger = structlog.get_logger(__name__)


def _clean_etag(etag: Optional[str]) -> Optional[str]:
    return etag.strip('"') if etag else None


class MetadataReader:
    """Read-only view of stored objects."""

    def __init__(self, store: ObjectStoreClient, chunk_size: int = 65536):
        self.store = store
        self.chunk_size = chunk_size

    @staticmethod
    def _to_metadata(key: str, head: Dict[str, Any]) -> ObjectMetadata:
        return ObjectMetadata(
            key=key,
            size_bytes=int(head.get("ContentLength", 0)),
            content_type=head.get("ContentType"),
            last_modified=head.get("LastModified"),
            etag=_clean_etag(head.get("ETag")),
            user_metadata=decode_user_metadata(head.get("Metadata")),
        )

    async def exists(self, key: str) -> bool:
        """
        Whether an object is stored under ``key``.

        Not found is the normal False answer; connectivity and permission
        failures still raise.
        """
        try:
            await self.store.head_object(key)
        except ObjectNotFoundError:
            return False
        return True

    async def stat(self, key: str) -> ObjectMetadata:
        """
        Raises:
            ObjectNotFoundError: If the object doesn't exist
        """
        head = await self.store.head_object(key)
        return self._to_metadata(key, head)

    async def list(self, category: FolderCategory, limit: int = 100) -> List[ObjectMetadata]:
        """List objects stored in a category, at most ``limit`` of them."""
        objects = await self.store.list_objects(f"{category.value}/", limit=limit)
        return [
            ObjectMetadata(
                key=obj["Key"],
                size_bytes=int(obj.get("Size", 0)),
                content_type=None,
                last_modified=obj.get("LastModified"),
                etag=_clean_etag(obj.get("ETag")),
            )
            for obj in objects
        ]

    async def open(self, key: str) -> Tuple[ObjectMetadata, AsyncIterator[bytes]]:
        """
        Open an object for streaming.

        Returns:
            Metadata and an async iterator over the body

        Raises:
            ObjectNotFoundError: If the object doesn't exist
        """
        response = await self.store.get_object(key)
        metadata = self._to_metadata(key, response)
        logger.debug("object_opened", key=key, size_bytes=metadata.size_bytes)
        return metadata, self.store.iter_body(response["Body"], self.chunk_size)
