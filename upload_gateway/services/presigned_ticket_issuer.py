"""
Presigned ticket issuance.

A ticket lets a client PUT one object straight into the store; its lifetime
is enforced by the store through the signature, not tracked by the gateway.
"""
import time
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from upload_gateway.core.config import MAX_PRESIGNED_EXPIRATION
from upload_gateway.core.exceptions import (
    AppException,
    InvalidBatchError,
    InvalidExpirationError,
    ObjectFolderMismatchError,
    SizeExceededError,
    StrategyUnavailableError,
)
from upload_gateway.integrations.object_storage_client import ObjectStoreClient
from upload_gateway.integrations.storage_exceptions import ObjectNotFoundError, StorageError
from upload_gateway.integrations.storage_utils import decode_user_metadata, normalize_content_type
from upload_gateway.models.enums import FolderCategory
from upload_gateway.models.upload import ObjectMetadata, PresignedTicket
from upload_gateway.services.folder_policy import FolderPolicy
from upload_gateway.services.key_namer import KeyNamer

logger = structlog.get_logger(__name__)

# Aggregate cap on declared sizes in one batch request
MAX_BATCH_TOTAL_BYTES = 100 * 1024 * 1024


class PresignedTicketIssuer:
    """Issues time-boxed single-object PUT credentials and read URLs."""

    def __init__(
        self,
        store: ObjectStoreClient,
        folder_policy: FolderPolicy,
        key_namer: KeyNamer,
        default_ttl_seconds: int = 3600,
        read_ttl_seconds: int = 3600,
        max_batch_size: int = 15,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.folder_policy = folder_policy
        self.key_namer = key_namer
        self.default_ttl_seconds = default_ttl_seconds
        self.read_ttl_seconds = read_ttl_seconds
        self.max_batch_size = max_batch_size
        self._clock = clock or time.time

    @staticmethod
    def _check_ttl(ttl_seconds: int) -> int:
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
            raise InvalidExpirationError(
                "expiresIn must be an integer number of seconds", MAX_PRESIGNED_EXPIRATION
            )
        if not 1 <= ttl_seconds <= MAX_PRESIGNED_EXPIRATION:
            raise InvalidExpirationError(
                f"expiresIn must be between 1 and {MAX_PRESIGNED_EXPIRATION} seconds",
                MAX_PRESIGNED_EXPIRATION,
            )
        return ttl_seconds

    def issue(
        self,
        category: Union[FolderCategory, str],
        original_name: str,
        content_type: str,
        ttl_seconds: Optional[int] = None,
        *,
        size_bytes: Optional[int] = None,
    ) -> PresignedTicket:
        """
        Issue a ticket for one direct PUT.

        Args:
            category: Destination folder
            original_name: Client file name, used for the key extension
            content_type: MIME type the PUT must carry
            ttl_seconds: Ticket lifetime (1 second to 7 days)
            size_bytes: Declared size; validated when given

        Returns:
            PresignedTicket

        Raises:
            InvalidCategoryError, DisallowedContentTypeError, SizeExceededError:
                The request fails the folder policy
            InvalidExpirationError: TTL outside 1 second to 7 days
            StrategyUnavailableError: The category is server-mediated
            StoreError: Signing failed
        """
        policy = self.folder_policy.validate(category, content_type, size_bytes)
        if policy.server_mediated:
            raise StrategyUnavailableError(
                f"Folder '{policy.category.value}' only accepts uploads through the gateway"
            )
        ttl = self._check_ttl(self.default_ttl_seconds if ttl_seconds is None else ttl_seconds)
        content_type = normalize_content_type(content_type)

        issued_at = int(self._clock())
        key = self.key_namer.next_key(policy.category, original_name, content_type)
        put_url = self.store.generate_presigned_url("put_object", key, ttl, content_type=content_type)

        logger.info(
            "presigned_ticket_issued",
            key=key,
            category=policy.category.value,
            ttl_seconds=ttl,
            declared_size=size_bytes,
        )
        return PresignedTicket(
            object_key=key,
            put_url=put_url,
            expires_at_epoch=issued_at + ttl,
            permanent_access_url=self.store.public_url(key),
            content_type=content_type,
            ttl_seconds=ttl,
            original_name=original_name,
            category=policy.category,
        )

    def issue_batch(
        self,
        category: Union[FolderCategory, str],
        files: List[Dict[str, Any]],
        ttl_seconds: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Issue one ticket per file entry.

        Each entry is ``{"file_name", "content_type", "size_bytes"?}``. A
        failing entry yields ``{"error", "error_kind"}`` instead of a ticket;
        the batch itself only fails on a bad category, TTL or batch shape.
        """
        policy = self.folder_policy.policy_for(category)
        if not files:
            raise InvalidBatchError("files must contain at least one entry")
        if len(files) > self.max_batch_size:
            raise InvalidBatchError(f"A batch may request at most {self.max_batch_size} tickets")
        declared_total = sum(entry.get("size_bytes") or 0 for entry in files)
        if declared_total > MAX_BATCH_TOTAL_BYTES:
            raise SizeExceededError(policy.category.value, declared_total, MAX_BATCH_TOTAL_BYTES)
        self._check_ttl(self.default_ttl_seconds if ttl_seconds is None else ttl_seconds)

        outcomes: List[Dict[str, Any]] = []
        for entry in files:
            file_name = entry.get("file_name", "")
            try:
                ticket = self.issue(
                    policy.category,
                    file_name,
                    entry.get("content_type", ""),
                    ttl_seconds,
                    size_bytes=entry.get("size_bytes"),
                )
            except AppException as e:
                outcomes.append({"file_name": file_name, "error": e.detail, "error_kind": e.error_kind})
                continue
            outcomes.append({"file_name": file_name, "ticket": ticket})

        logger.info(
            "presigned_batch_issued",
            category=policy.category.value,
            requested=len(files),
            issued=sum(1 for o in outcomes if "ticket" in o),
        )
        return outcomes

    def issue_read_url(self, key: str, ttl_seconds: Optional[int] = None) -> str:
        """Short-lived GET URL for an existing object."""
        ttl = self._check_ttl(self.read_ttl_seconds if ttl_seconds is None else ttl_seconds)
        return self.store.generate_presigned_url("get_object", key, ttl)

    async def confirm(self, key: str, category: Union[FolderCategory, str]) -> ObjectMetadata:
        """
        Check a directly uploaded object after the client reports completion.

        Objects above the category maximum are deleted; the size limit cannot
        be enforced before the client's PUT, so it is enforced here.

        Raises:
            InvalidCategoryError: Unknown category
            ObjectFolderMismatchError: The key is not in the category
            ObjectNotFoundError: Nothing was uploaded under the key
            SizeExceededError: The object was too large and has been removed
        """
        policy = self.folder_policy.policy_for(category)
        if not key.startswith(f"{policy.category.value}/"):
            raise ObjectFolderMismatchError(key, policy.category.value)

        head = await self.store.head_object(key)
        size = int(head.get("ContentLength", 0))
        if size > policy.max_size_bytes:
            try:
                await self.store.delete_object(key)
                logger.warning("oversized_direct_upload_removed", key=key, size_bytes=size)
            except StorageError as e:
                logger.error("oversized_direct_upload_remove_failed", key=key, error=str(e))
                raise
            raise SizeExceededError(policy.category.value, size, policy.max_size_bytes)

        content_type = head.get("ContentType")
        if content_type and not policy.allows(content_type):
            logger.warning("direct_upload_content_type_mismatch", key=key, content_type=content_type)

        logger.info("direct_upload_confirmed", key=key, size_bytes=size)
        return ObjectMetadata(
            key=key,
            size_bytes=size,
            content_type=content_type,
            last_modified=head.get("LastModified"),
            etag=(head.get("ETag") or "").strip('"') or None,
            user_metadata=decode_user_metadata(head.get("Metadata")),
        )

    async def confirm_batch(
        self, category: Union[FolderCategory, str], keys: List[str]
    ) -> List[Dict[str, Any]]:
        """
        Confirm several directly uploaded objects of one folder.

        Each key yields ``{"object_key", "metadata"}`` or, when that object is
        missing, misplaced or oversized, ``{"object_key", "error", "error_kind"}``.
        Store outages are not per-key outcomes and propagate.
        """
        policy = self.folder_policy.policy_for(category)
        if not keys:
            raise InvalidBatchError("objectKeys must contain at least one entry")
        if len(keys) > self.max_batch_size:
            raise InvalidBatchError(f"A batch may confirm at most {self.max_batch_size} objects")

        outcomes: List[Dict[str, Any]] = []
        for key in keys:
            try:
                meta = await self.confirm(key, policy.category)
            except AppException as e:
                outcomes.append({"object_key": key, "error": e.detail, "error_kind": e.error_kind})
                continue
            except ObjectNotFoundError as e:
                outcomes.append({"object_key": key, "error": e.message, "error_kind": e.error_kind})
                continue
            outcomes.append({"object_key": key, "metadata": meta})

        logger.info(
            "direct_upload_batch_confirmed",
            category=policy.category.value,
            requested=len(keys),
            confirmed=sum(1 for o in outcomes if "metadata" in o),
        )
        return outcomes
