"""
Upload router.

Decides how a file reaches the store: a presigned ticket for the client to
PUT directly, or a transfer streamed through the gateway. In AUTO mode a
failed transfer falls back once to the other path; nothing is retried
silently beyond that.
"""
import asyncio
from typing import Optional, Union

import structlog

from upload_gateway.core.exceptions import SizeExceededError, StrategyUnavailableError
from upload_gateway.integrations.storage_exceptions import (
    TransientStoreError,
    TransientUploadError,
    UploadTimeoutError,
)
from upload_gateway.integrations.storage_utils import build_upload_metadata
from upload_gateway.models.enums import (
    TransferPreference,
    TransferStrategy,
    UploadOperation,
    UploadState,
)
from upload_gateway.models.upload import PresignedTicket, UploadRequest, UploadResult
from upload_gateway.services.folder_policy import CategoryPolicy, FolderPolicy
from upload_gateway.services.key_namer import KeyNamer
from upload_gateway.services.multipart_uploader import MultipartUploader, ProgressCallback
from upload_gateway.services.presigned_ticket_issuer import PresignedTicketIssuer
from upload_gateway.services.rate_limiter import RateLimiter
from upload_gateway.services.temp_artifact_janitor import TempArtifactJanitor

logger = structlog.get_logger(__name__)

RouteOutcome = Union[UploadResult, PresignedTicket]


def choose_strategy(
    request: UploadRequest,
    policy: CategoryPolicy,
    preference: TransferPreference,
    direct_threshold_bytes: int,
) -> TransferStrategy:
    """
    Pick the transfer path for a validated request.

    Raises:
        StrategyUnavailableError: The preference cannot be served
    """
    if policy.server_mediated:
        if preference is TransferPreference.DIRECT_ONLY:
            raise StrategyUnavailableError(
                f"Folder '{policy.category.value}' does not accept direct uploads"
            )
        if not request.has_source:
            raise StrategyUnavailableError(
                f"Folder '{policy.category.value}' requires the file to be sent to the gateway"
            )
        return TransferStrategy.STREAMED

    if preference is TransferPreference.DIRECT_ONLY:
        return TransferStrategy.DIRECT
    if preference is TransferPreference.STREAM_ONLY:
        if not request.has_source:
            raise StrategyUnavailableError("A streamed upload needs the file body")
        return TransferStrategy.STREAMED

    if not request.has_source:
        return TransferStrategy.DIRECT
    size = request.declared_size_bytes
    if size is not None and size > direct_threshold_bytes:
        return TransferStrategy.DIRECT
    return TransferStrategy.STREAMED


def _fallback_possible(
    strategy: TransferStrategy, request: UploadRequest, policy: CategoryPolicy
) -> bool:
    if strategy is TransferStrategy.STREAMED:
        return request.has_source
    return not policy.server_mediated


class UploadRouter:
    """Routes one upload request to a transfer strategy and runs it."""

    def __init__(
        self,
        folder_policy: FolderPolicy,
        key_namer: KeyNamer,
        uploader: MultipartUploader,
        ticket_issuer: PresignedTicketIssuer,
        janitor: TempArtifactJanitor,
        rate_limiter: Optional[RateLimiter] = None,
        direct_threshold_bytes: int = 5 * 1024 * 1024,
    ):
        self.folder_policy = folder_policy
        self.key_namer = key_namer
        self.uploader = uploader
        self.ticket_issuer = ticket_issuer
        self.janitor = janitor
        self.rate_limiter = rate_limiter
        self.direct_threshold_bytes = direct_threshold_bytes

    async def route_and_upload(
        self,
        request: UploadRequest,
        preference: TransferPreference = TransferPreference.AUTO,
        *,
        client_identity: Optional[str] = None,
        operation: UploadOperation = UploadOperation.SINGLE_UPLOAD,
        progress_callback: Optional[ProgressCallback] = None,
        ttl_seconds: Optional[int] = None,
    ) -> RouteOutcome:
        """
        Validate, route and run one upload.

        Args:
            request: File and destination
            preference: AUTO, DIRECT_ONLY or STREAM_ONLY
            client_identity: Rate-limited caller; no limit applies when None
            operation: Rate limit budget to charge
            progress_callback: Receives bytes transferred so far (streamed path)
            ttl_seconds: Ticket lifetime (direct path)

        Returns:
            UploadResult for a streamed transfer, PresignedTicket for a direct one

        Raises:
            RateLimitedError: Caller exhausted its budget
            CallerInputError: Category, content type, size or strategy problems
            UploadError: Transfer failed. Only transient failures and timeouts
                get the single AUTO fallback; permanent store errors propagate
            StorageError: Ticket signing failed for a non-transient reason
        """
        log = logger.bind(
            category=str(getattr(request.category, "value", request.category)),
            original_name=request.original_name,
            preference=preference.value,
            client_id=client_identity,
        )
        log.info("upload_state", state=UploadState.RECEIVED.value)

        try:
            if client_identity is not None and self.rate_limiter is not None:
                self.rate_limiter.enforce(client_identity, operation)

            policy = self.folder_policy.validate(
                request.category, request.declared_content_type, request.known_size_bytes
            )
            request.category = policy.category
            log.info("upload_state", state=UploadState.VALIDATED.value)

            strategy = choose_strategy(request, policy, preference, self.direct_threshold_bytes)
            try:
                outcome = await self._attempt(
                    strategy, request, policy, progress_callback, ttl_seconds, log
                )
            except (TransientUploadError, UploadTimeoutError) as e:
                fallback = (
                    TransferStrategy.DIRECT
                    if strategy is TransferStrategy.STREAMED
                    else TransferStrategy.STREAMED
                )
                if preference is not TransferPreference.AUTO or not _fallback_possible(
                    fallback, request, policy
                ):
                    raise
                log.warning(
                    "upload_fallback",
                    failed_strategy=strategy.value,
                    fallback_strategy=fallback.value,
                    error_kind=e.error_kind,
                )
                outcome = await self._attempt(
                    fallback, request, policy, progress_callback, ttl_seconds, log
                )
        except BaseException as e:
            log.warning(
                "upload_state",
                state=UploadState.FAILED.value,
                error_type=type(e).__name__,
                error_kind=getattr(e, "error_kind", None),
            )
            raise
        finally:
            await self.janitor.cleanup_after(request.temp_artifact)

        log.info("upload_state", state=UploadState.COMPLETED.value, key=outcome.object_key)
        return outcome

    async def _attempt(
        self,
        strategy: TransferStrategy,
        request: UploadRequest,
        policy: CategoryPolicy,
        progress_callback: Optional[ProgressCallback],
        ttl_seconds: Optional[int],
        log,
    ) -> RouteOutcome:
        if strategy is TransferStrategy.DIRECT:
            return self._direct(request, policy, ttl_seconds, log)
        return await self._stream(request, policy, progress_callback, log)

    def _direct(
        self,
        request: UploadRequest,
        policy: CategoryPolicy,
        ttl_seconds: Optional[int],
        log,
    ) -> PresignedTicket:
        try:
            ticket = self.ticket_issuer.issue(
                policy.category,
                request.original_name,
                request.declared_content_type,
                ttl_seconds,
                size_bytes=request.declared_size_bytes,
            )
        except TransientStoreError as e:
            raise TransientUploadError(
                self.uploader.store.bucket,
                f"{policy.category.value}/",
                original_exception=e,
                reason="ticket issuance failed",
            ) from e
        log.info("upload_state", state=UploadState.DIRECT_ISSUED.value, key=ticket.object_key)
        return ticket

    async def _stream(
        self,
        request: UploadRequest,
        policy: CategoryPolicy,
        progress_callback: Optional[ProgressCallback],
        log,
    ) -> UploadResult:
        key = self.key_namer.next_key(
            policy.category, request.original_name, request.declared_content_type
        )
        log.info("upload_state", state=UploadState.STREAMING.value, key=key)

        staged_file = None
        try:
            source = request.source
            if source is None:
                staged_file = await asyncio.to_thread(open, request.temp_artifact.path, "rb")
                source = staged_file
            result = await self.uploader.upload(
                source,
                key,
                request.declared_content_type,
                build_upload_metadata(request.original_name, request.metadata),
                original_name=request.original_name,
                category=policy.category,
                progress_callback=progress_callback,
            )
        finally:
            if staged_file is not None:
                await asyncio.to_thread(staged_file.close)
            await self.janitor.cleanup_after(request.temp_artifact)

        # Sources of unknown length are only measured once transferred
        if result.size_bytes > policy.max_size_bytes:
            log.warning("oversized_stream_removed", key=key, size_bytes=result.size_bytes)
            await self.uploader.store.delete_object(key)
            raise SizeExceededError(policy.category.value, result.size_bytes, policy.max_size_bytes)
        return result
