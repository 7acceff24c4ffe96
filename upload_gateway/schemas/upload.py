"""
Pydantic schemas for upload operations.

Field names are snake_case in Python and camelCase on the wire.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from upload_gateway.models.upload import (
    BatchUploadResult,
    PresignedTicket,
    SkippedFile,
    UploadResult,
)


class CamelModel(BaseModel):
    """Accepts both field names and camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


# Request Schemas
class PresignedUploadRequest(CamelModel):
    """Schema for requesting a presigned PUT ticket."""

    file_name: str = Field(
        ...,
        alias="fileName",
        min_length=1,
        max_length=1024,
        description="Original file name",
        examples=["holiday.png"],
    )
    folder: str = Field(..., description="Destination folder", examples=["Images"])
    content_type: str = Field(
        ..., alias="contentType", min_length=1, description="MIME type the PUT will carry"
    )
    expires_in: Optional[int] = Field(
        default=None, alias="expiresIn", description="Ticket lifetime in seconds"
    )
    file_size: Optional[int] = Field(
        default=None, alias="fileSize", ge=0, description="Declared file size in bytes"
    )

    @field_validator("file_name")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        """Validate file_name is not just whitespace."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("fileName must not be blank")
        return stripped

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "fileName": "report.pdf",
                "folder": "Uploads",
                "contentType": "application/pdf",
                "expiresIn": 600,
                "fileSize": 1048576,
            }
        },
    )


class PresignedFileSpec(CamelModel):
    """One file of a batch ticket request."""

    file_name: str = Field(..., alias="fileName", min_length=1, max_length=1024)
    content_type: str = Field(..., alias="contentType", min_length=1)
    file_size: Optional[int] = Field(default=None, alias="fileSize", ge=0)


class PresignedBatchRequest(CamelModel):
    """Schema for requesting several presigned tickets at once."""

    folder: str = Field(..., description="Destination folder")
    files: List[PresignedFileSpec] = Field(..., min_length=1, description="Files to upload")
    expires_in: Optional[int] = Field(default=None, alias="expiresIn")


class ConfirmUploadRequest(CamelModel):
    """Schema for confirming a direct upload."""

    object_key: str = Field(..., alias="objectKey", min_length=1)
    folder: str = Field(..., description="Folder the ticket was issued for")


class ConfirmBatchRequest(CamelModel):
    """Schema for confirming several direct uploads of one folder."""

    folder: str = Field(..., description="Folder the tickets were issued for")
    object_keys: List[str] = Field(..., alias="objectKeys", min_length=1)


# Response Schemas
class PresignedUploadResponse(CamelModel):
    """Schema for a presigned PUT ticket."""

    presigned_url: str = Field(..., alias="presignedUrl")
    object_key: str = Field(..., alias="objectKey")
    permanent_url: str = Field(..., alias="permanentUrl")
    expires_in: int = Field(..., alias="expiresIn")
    expires_at: int = Field(..., alias="expiresAt", description="Expiry as epoch seconds")
    original_name: str = Field(..., alias="originalName")
    folder: str
    method: str = "PUT"
    headers: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_ticket(cls, ticket: PresignedTicket) -> "PresignedUploadResponse":
        return cls(
            presigned_url=ticket.put_url,
            object_key=ticket.object_key,
            permanent_url=ticket.permanent_access_url,
            expires_in=ticket.ttl_seconds,
            expires_at=ticket.expires_at_epoch,
            original_name=ticket.original_name,
            folder=ticket.category.value,
            headers={"Content-Type": ticket.content_type},
        )


class PresignedBatchItem(CamelModel):
    file_name: str = Field(..., alias="fileName")
    ticket: Optional[PresignedUploadResponse] = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(default=None, alias="errorKind")


class PresignedBatchResponse(CamelModel):
    """Per-file outcomes of a batch ticket request."""

    folder: str
    results: List[PresignedBatchItem]
    issued_count: int = Field(..., alias="issuedCount")
    failed_count: int = Field(..., alias="failedCount")


class UploadResultResponse(CamelModel):
    """Schema for a completed upload."""

    object_key: str = Field(..., alias="objectKey")
    permanent_url: str = Field(..., alias="permanentUrl")
    original_name: str = Field(..., alias="originalName")
    size: int
    folder: str
    content_type: str = Field(..., alias="contentType")
    etag: Optional[str] = None

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadResultResponse":
        return cls(
            object_key=result.object_key,
            permanent_url=result.public_access_url,
            original_name=result.original_name,
            size=result.size_bytes,
            folder=result.category.value,
            content_type=result.content_type,
            etag=result.etag,
        )


class SkippedFileResponse(CamelModel):
    original_name: str = Field(..., alias="originalName")
    error_kind: str = Field(..., alias="errorKind")
    message: str

    @classmethod
    def from_skipped(cls, skipped: SkippedFile) -> "SkippedFileResponse":
        return cls(
            original_name=skipped.original_name,
            error_kind=skipped.error_kind,
            message=skipped.message,
        )


class MultipleUploadResponse(CamelModel):
    """Schema for a multiple-file upload; skipped files are listed explicitly."""

    files: List[UploadResultResponse]
    uploaded_count: int = Field(..., alias="uploadedCount")
    skipped_count: int = Field(..., alias="skippedCount")
    skipped: List[SkippedFileResponse] = Field(default_factory=list)

    @classmethod
    def from_batch(cls, batch: BatchUploadResult) -> "MultipleUploadResponse":
        return cls(
            files=[UploadResultResponse.from_result(r) for r in batch.results],
            uploaded_count=batch.uploaded_count,
            skipped_count=batch.skipped_count,
            skipped=[SkippedFileResponse.from_skipped(s) for s in batch.skipped],
        )


class FolderInfo(CamelModel):
    name: str
    description: str
    max_size_bytes: int = Field(..., alias="maxSizeBytes")
    allowed_types: List[str] = Field(..., alias="allowedTypes")
    server_mediated: bool = Field(..., alias="serverMediated")


class FolderListResponse(CamelModel):
    folders: List[FolderInfo]


class UploadStatusResponse(CamelModel):
    """Transfers currently running through this gateway process."""

    active_transfers: int = Field(..., alias="activeTransfers")
    bytes_in_flight: int = Field(..., alias="bytesInFlight")
    buffer_limit_bytes: int = Field(..., alias="bufferLimitBytes", description="Upper bound on part buffers held")
    staged_files: int = Field(..., alias="stagedFiles")
    staged_bytes: int = Field(..., alias="stagedBytes")
