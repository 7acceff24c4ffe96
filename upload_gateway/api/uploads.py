"""
FastAPI routes for upload operations.

This module provides RESTful API endpoints for:
- Issuing presigned PUT tickets (single and batch) and confirming direct uploads
- Reporting transfers currently running through the process
- Streaming single and multiple files through the gateway
- Listing folders and their objects
- Deleting stored files
"""
import asyncio
from typing import List

import structlog
from fastapi import (
    APIRouter,
    Depends,
    File,
    Path,
    Query,
    UploadFile,
    status as http_status,
)

from upload_gateway.core.dependencies import (
    GatewayServices,
    get_client_identity,
    get_services,
)
from upload_gateway.core.exceptions import CallerInputError, TooManyFilesError
from upload_gateway.models.enums import TransferPreference, UploadOperation
from upload_gateway.models.upload import SkippedFile, UploadRequest
from upload_gateway.schemas.files import (
    ConfirmBatchItem,
    ConfirmBatchResponse,
    DeleteFileResponse,
    ObjectListResponse,
    ObjectMetadataResponse,
)
from upload_gateway.schemas.upload import (
    ConfirmBatchRequest,
    ConfirmUploadRequest,
    FolderInfo,
    FolderListResponse,
    MultipleUploadResponse,
    PresignedBatchItem,
    PresignedBatchRequest,
    PresignedBatchResponse,
    PresignedUploadRequest,
    PresignedUploadResponse,
    UploadResultResponse,
    UploadStatusResponse,
)

logger = structlog.get_logger(__name__)

# Create router
router = APIRouter(prefix="/uploads", tags=["Uploads"])

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@router.get(
    "/folders",
    response_model=FolderListResponse,
    summary="List folders",
    description="List upload folders with their size and content-type policies.",
)
async def list_folders(
    services: GatewayServices = Depends(get_services),
) -> FolderListResponse:
    return FolderListResponse(
        folders=[FolderInfo(**entry) for entry in services.folder_policy.describe()]
    )


@router.post(
    "/presigned",
    response_model=PresignedUploadResponse,
    summary="Issue presigned upload URL",
    description="Issue a time-limited URL the client uses to PUT one file directly to storage.",
)
async def create_presigned_upload(
    data: PresignedUploadRequest,
    client_identity: str = Depends(get_client_identity),
    services: GatewayServices = Depends(get_services),
) -> PresignedUploadResponse:
    """
    Issue a presigned PUT ticket.

    Folders that require server mediation (Documents) are refused; their
    files must be sent to ``/uploads/{folder}/single``.
    """
    log = logger.bind(client_id=client_identity, folder=data.folder, file_name=data.file_name)
    log.info("api_create_presigned_upload")

    ticket = await services.router.route_and_upload(
        UploadRequest(
            category=data.folder,
            original_name=data.file_name,
            declared_content_type=data.content_type,
            declared_size_bytes=data.file_size,
        ),
        TransferPreference.DIRECT_ONLY,
        client_identity=client_identity,
        operation=UploadOperation.PRESIGNED,
        ttl_seconds=data.expires_in,
    )
    return PresignedUploadResponse.from_ticket(ticket)


@router.post(
    "/presigned/batch",
    response_model=PresignedBatchResponse,
    summary="Issue presigned upload URLs in batch",
    description="Issue one presigned PUT URL per file; failing files are reported individually.",
)
async def create_presigned_batch(
    data: PresignedBatchRequest,
    client_identity: str = Depends(get_client_identity),
    services: GatewayServices = Depends(get_services),
) -> PresignedBatchResponse:
    log = logger.bind(client_id=client_identity, folder=data.folder, file_count=len(data.files))
    log.info("api_create_presigned_batch")

    services.rate_limiter.enforce(client_identity, UploadOperation.PRESIGNED)
    outcomes = services.ticket_issuer.issue_batch(
        data.folder,
        [
            {
                "file_name": spec.file_name,
                "content_type": spec.content_type,
                "size_bytes": spec.file_size,
            }
            for spec in data.files
        ],
        data.expires_in,
    )

    results = [
        PresignedBatchItem(
            file_name=outcome["file_name"],
            ticket=PresignedUploadResponse.from_ticket(outcome["ticket"]) if "ticket" in outcome else None,
            error=outcome.get("error"),
            error_kind=outcome.get("error_kind"),
        )
        for outcome in outcomes
    ]
    issued = sum(1 for item in results if item.ticket is not None)
    return PresignedBatchResponse(
        folder=data.folder,
        results=results,
        issued_count=issued,
        failed_count=len(results) - issued,
    )


@router.post(
    "/presigned/confirm",
    response_model=ObjectMetadataResponse,
    summary="Confirm direct upload",
    description="Verify a directly uploaded object; oversized objects are deleted.",
)
async def confirm_presigned_upload(
    data: ConfirmUploadRequest,
    services: GatewayServices = Depends(get_services),
) -> ObjectMetadataResponse:
    logger.info("api_confirm_presigned_upload", object_key=data.object_key, folder=data.folder)
    meta = await services.ticket_issuer.confirm(data.object_key, data.folder)
    return ObjectMetadataResponse.from_metadata(meta)


@router.post(
    "/presigned/batch/confirm",
    response_model=ConfirmBatchResponse,
    summary="Confirm direct uploads in batch",
    description="Verify several directly uploaded objects of one folder; failures are reported per object.",
)
async def confirm_presigned_batch(
    data: ConfirmBatchRequest,
    client_identity: str = Depends(get_client_identity),
    services: GatewayServices = Depends(get_services),
) -> ConfirmBatchResponse:
    log = logger.bind(client_id=client_identity, folder=data.folder, object_count=len(data.object_keys))
    log.info("api_confirm_presigned_batch")

    services.rate_limiter.enforce(client_identity, UploadOperation.BATCH_CONFIRM)
    outcomes = await services.ticket_issuer.confirm_batch(data.folder, data.object_keys)

    results = [
        ConfirmBatchItem(
            object_key=outcome["object_key"],
            metadata=(
                ObjectMetadataResponse.from_metadata(outcome["metadata"])
                if "metadata" in outcome
                else None
            ),
            error=outcome.get("error"),
            error_kind=outcome.get("error_kind"),
        )
        for outcome in outcomes
    ]
    confirmed = sum(1 for item in results if item.metadata is not None)
    return ConfirmBatchResponse(
        folder=services.folder_policy.parse_category(data.folder).value,
        results=results,
        confirmed_count=confirmed,
        failed_count=len(results) - confirmed,
    )


@router.get(
    "/status",
    response_model=UploadStatusResponse,
    summary="Transfer status",
    description="Report server-mediated transfers and staged files held by this process.",
)
async def upload_status(
    services: GatewayServices = Depends(get_services),
) -> UploadStatusResponse:
    transfers = services.uploader.status()
    staged_files, staged_bytes = await asyncio.to_thread(services.janitor.staging_usage)
    return UploadStatusResponse(
        active_transfers=transfers["active_transfers"],
        bytes_in_flight=transfers["bytes_in_flight"],
        buffer_limit_bytes=transfers["buffer_limit_bytes"],
        staged_files=staged_files,
        staged_bytes=staged_bytes,
    )


@router.post(
    "/{folder}/single",
    response_model=UploadResultResponse,
    status_code=http_status.HTTP_201_CREATED,
    summary="Upload one file",
    description="Stream one file through the gateway into the given folder.",
)
async def upload_single(
    folder: str = Path(..., description="Destination folder"),
    file: UploadFile = File(..., description="File to upload"),
    client_identity: str = Depends(get_client_identity),
    services: GatewayServices = Depends(get_services),
) -> UploadResultResponse:
    """
    Upload a single file.

    The body is staged to disk, checked against the folder policy and
    streamed to storage in parts; the staged copy is always removed.
    """
    log = logger.bind(client_id=client_identity, folder=folder, file_name=file.filename)
    log.info("api_upload_single")

    content_type = file.content_type or DEFAULT_CONTENT_TYPE
    policy = services.folder_policy.validate(folder, content_type)
    services.rate_limiter.enforce(client_identity, UploadOperation.SINGLE_UPLOAD)

    original_name = file.filename or "upload"
    artifact = await services.janitor.stage(
        file, original_name, max_bytes=policy.max_size_bytes, category=policy.category
    )
    try:
        result = await services.router.route_and_upload(
            UploadRequest(
                category=policy.category,
                original_name=original_name,
                declared_content_type=content_type,
                temp_artifact=artifact,
            ),
            TransferPreference.STREAM_ONLY,
            operation=UploadOperation.SINGLE_UPLOAD,
        )
    finally:
        await services.janitor.cleanup_after(artifact)

    return UploadResultResponse.from_result(result)


@router.post(
    "/{folder}/multiple",
    response_model=MultipleUploadResponse,
    status_code=http_status.HTTP_201_CREATED,
    summary="Upload several files",
    description=(
        "Stream several files through the gateway. Files that fail validation or "
        "transfer are listed under 'skipped'; the request only fails when every file fails."
    ),
)
async def upload_multiple(
    folder: str = Path(..., description="Destination folder"),
    files: List[UploadFile] = File(..., description="Files to upload"),
    client_identity: str = Depends(get_client_identity),
    services: GatewayServices = Depends(get_services),
) -> MultipleUploadResponse:
    log = logger.bind(client_id=client_identity, folder=folder, file_count=len(files))
    log.info("api_upload_multiple")

    category = services.folder_policy.parse_category(folder)
    max_files = services.settings.max_files_per_batch
    if len(files) > max_files:
        raise TooManyFilesError(len(files), max_files)
    services.rate_limiter.enforce(client_identity, UploadOperation.BATCH_UPLOAD)

    requests: List[UploadRequest] = []
    skipped: List[SkippedFile] = []
    try:
        for upload in files:
            original_name = upload.filename or "upload"
            content_type = upload.content_type or DEFAULT_CONTENT_TYPE
            try:
                policy = services.folder_policy.validate(category, content_type)
                artifact = await services.janitor.stage(
                    upload, original_name, max_bytes=policy.max_size_bytes, category=category
                )
            except CallerInputError as e:
                skipped.append(SkippedFile(original_name, e.error_kind, e.detail))
                continue
            requests.append(
                UploadRequest(
                    category=category,
                    original_name=original_name,
                    declared_content_type=content_type,
                    temp_artifact=artifact,
                )
            )
    except BaseException:
        for request in requests:
            await services.janitor.cleanup_after(request.temp_artifact)
        raise

    batch = await services.batch_uploader.upload_many(
        requests, TransferPreference.STREAM_ONLY, skipped=skipped
    )
    log.info(
        "api_upload_multiple_completed",
        uploaded=batch.uploaded_count,
        skipped=batch.skipped_count,
    )
    return MultipleUploadResponse.from_batch(batch)


@router.get(
    "/{folder}/list",
    response_model=ObjectListResponse,
    summary="List folder objects",
    description="List objects stored in a folder.",
)
async def list_folder_objects(
    folder: str = Path(..., description="Folder to list"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum objects to return"),
    services: GatewayServices = Depends(get_services),
) -> ObjectListResponse:
    category = services.folder_policy.parse_category(folder)
    objects = await services.metadata_reader.list(category, limit=limit)
    return ObjectListResponse(
        folder=category.value,
        count=len(objects),
        objects=[ObjectMetadataResponse.from_metadata(meta) for meta in objects],
    )


@router.delete(
    "/file/{object_key:path}",
    response_model=DeleteFileResponse,
    summary="Delete file",
    description="Delete a stored file. Returns 404 without touching storage when it doesn't exist.",
)
async def delete_file(
    object_key: str,
    client_identity: str = Depends(get_client_identity),
    services: GatewayServices = Depends(get_services),
) -> DeleteFileResponse:
    logger.info("api_delete_file", client_id=client_identity, object_key=object_key)
    await services.janitor.delete_object(object_key)
    return DeleteFileResponse(object_key=object_key, message="File deleted successfully")
