"""
FastAPI routes for serving stored files and their metadata.
"""
from email.utils import formatdate

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from upload_gateway.core.dependencies import GatewayServices, get_services
from upload_gateway.schemas.files import (
    FileCheckResponse,
    FileInfoResponse,
    ObjectMetadataResponse,
)

logger = structlog.get_logger(__name__)

# Create router
router = APIRouter(prefix="/files", tags=["Files"])

CACHE_CONTROL = "public, max-age=31536000"


@router.get(
    "/info/{object_key:path}",
    response_model=FileInfoResponse,
    summary="Get file info",
    description="Get stored file metadata and a short-lived read URL.",
)
async def get_file_info(
    object_key: str,
    services: GatewayServices = Depends(get_services),
) -> FileInfoResponse:
    logger.info("api_get_file_info", object_key=object_key)
    meta = await services.metadata_reader.stat(object_key)
    base = ObjectMetadataResponse.from_metadata(meta)
    return FileInfoResponse(
        **base.model_dump(),
        permanent_url=services.store.public_url(object_key),
        read_url=services.ticket_issuer.issue_read_url(object_key),
        read_url_expires_in=services.ticket_issuer.read_ttl_seconds,
    )


@router.get(
    "/check/{object_key:path}",
    response_model=FileCheckResponse,
    summary="Check file exists",
    description="Report whether a file exists, with its metadata when it does.",
)
async def check_file(
    object_key: str,
    services: GatewayServices = Depends(get_services),
) -> FileCheckResponse:
    if not await services.metadata_reader.exists(object_key):
        return FileCheckResponse(exists=False, object_key=object_key)
    meta = await services.metadata_reader.stat(object_key)
    return FileCheckResponse(
        exists=True,
        object_key=object_key,
        metadata=ObjectMetadataResponse.from_metadata(meta),
    )


@router.get(
    "/{object_key:path}",
    summary="Download file",
    description="Stream a stored file.",
    response_class=StreamingResponse,
)
async def serve_file(
    object_key: str,
    services: GatewayServices = Depends(get_services),
) -> StreamingResponse:
    """
    Stream file bytes from storage.

    Responds 404 when the object doesn't exist.
    """
    meta, body = await services.metadata_reader.open(object_key)
    headers = {
        "Content-Length": str(meta.size_bytes),
        "Cache-Control": CACHE_CONTROL,
    }
    if meta.etag:
        headers["ETag"] = f'"{meta.etag}"'
    if meta.last_modified:
        headers["Last-Modified"] = formatdate(meta.last_modified.timestamp(), usegmt=True)

    return StreamingResponse(
        body,
        media_type=meta.content_type or "application/octet-stream",
        headers=headers,
    )
