"""
FastAPI dependency functions.

Components are built once per process by the application lifespan and kept
on ``app.state.services``; dependencies only look them up.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from upload_gateway.core.config import Settings
from upload_gateway.integrations.object_storage_client import ObjectStoreClient
from upload_gateway.models.enums import UploadOperation
from upload_gateway.services.batch_uploader import BatchUploader
from upload_gateway.services.folder_policy import FolderPolicy
from upload_gateway.services.key_namer import KeyNamer
from upload_gateway.services.metadata_reader import MetadataReader
from upload_gateway.services.multipart_uploader import MultipartUploader
from upload_gateway.services.presigned_ticket_issuer import PresignedTicketIssuer
from upload_gateway.services.rate_limiter import RateLimiter
from upload_gateway.services.temp_artifact_janitor import TempArtifactJanitor
from upload_gateway.services.upload_router import UploadRouter


@dataclass
class GatewayServices:
    """Every component of the gateway, wired around one store handle."""

    settings: Settings
    store: ObjectStoreClient
    folder_policy: FolderPolicy
    key_namer: KeyNamer
    uploader: MultipartUploader
    ticket_issuer: PresignedTicketIssuer
    rate_limiter: RateLimiter
    janitor: TempArtifactJanitor
    metadata_reader: MetadataReader
    router: UploadRouter
    batch_uploader: BatchUploader


def build_services(settings: Settings, store: ObjectStoreClient) -> GatewayServices:
    """
    Wire the gateway components.

    Args:
        settings: Application settings
        store: Connected object store handle

    Returns:
        GatewayServices container
    """
    folder_policy = FolderPolicy()
    key_namer = KeyNamer()
    uploader = MultipartUploader(
        store,
        part_size=settings.multipart_part_size_bytes,
        max_concurrency=settings.multipart_max_concurrency,
        transfer_timeout_seconds=settings.transfer_timeout_minutes * 60,
        part_timeout_seconds=settings.part_timeout_seconds,
    )
    ticket_issuer = PresignedTicketIssuer(
        store,
        folder_policy,
        key_namer,
        default_ttl_seconds=settings.presigned_url_expiration,
        read_ttl_seconds=settings.read_url_expiration,
        max_batch_size=settings.max_presigned_batch,
    )
    rate_limiter = RateLimiter(
        limits={
            UploadOperation.SINGLE_UPLOAD: settings.rate_limit_single_upload,
            UploadOperation.BATCH_UPLOAD: settings.rate_limit_batch_upload,
            UploadOperation.PRESIGNED: settings.rate_limit_presigned,
            UploadOperation.BATCH_CONFIRM: settings.rate_limit_batch_confirm,
        },
        window_ms=settings.rate_limit_window_ms,
    )
    janitor = TempArtifactJanitor(
        store,
        staging_dir=settings.temp_upload_dir,
        chunk_size=settings.staging_chunk_size,
    )
    router = UploadRouter(
        folder_policy,
        key_namer,
        uploader,
        ticket_issuer,
        janitor,
        rate_limiter=rate_limiter,
        direct_threshold_bytes=settings.direct_upload_threshold_bytes,
    )
    return GatewayServices(
        settings=settings,
        store=store,
        folder_policy=folder_policy,
        key_namer=key_namer,
        uploader=uploader,
        ticket_issuer=ticket_issuer,
        rate_limiter=rate_limiter,
        janitor=janitor,
        metadata_reader=MetadataReader(store),
        router=router,
        batch_uploader=BatchUploader(router, janitor),
    )


def get_services(request: Request) -> GatewayServices:
    return request.app.state.services


def get_client_identity(
    request: Request,
    x_client_id: Optional[str] = Header(None, alias="X-Client-ID"),
) -> str:
    """
    Identity used for rate limiting.

    The upstream auth layer sets ``X-Client-ID``; otherwise the peer address
    is used.

    Args:
        request: FastAPI request object
        x_client_id: Authenticated client id, if any

    Returns:
        Client identity string
    """
    if x_client_id and x_client_id.strip():
        return x_client_id.strip()
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"
