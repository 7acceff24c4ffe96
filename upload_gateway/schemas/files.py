"""
Pydantic schemas for stored file lookups.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from upload_gateway.models.upload import ObjectMetadata
from upload_gateway.schemas.upload import CamelModel


class ObjectMetadataResponse(CamelModel):
    """Schema for stored object metadata."""

    object_key: str = Field(..., alias="objectKey")
    size: int
    content_type: Optional[str] = Field(default=None, alias="contentType")
    last_modified: Optional[datetime] = Field(default=None, alias="lastModified")
    etag: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_metadata(cls, meta: ObjectMetadata) -> "ObjectMetadataResponse":
        return cls(
            object_key=meta.key,
            size=meta.size_bytes,
            content_type=meta.content_type,
            last_modified=meta.last_modified,
            etag=meta.etag,
            metadata=dict(meta.user_metadata),
        )


class FileInfoResponse(ObjectMetadataResponse):
    """Metadata plus a short-lived read URL."""

    permanent_url: str = Field(..., alias="permanentUrl")
    read_url: str = Field(..., alias="readUrl")
    read_url_expires_in: int = Field(..., alias="readUrlExpiresIn")


class FileCheckResponse(CamelModel):
    exists: bool
    object_key: str = Field(..., alias="objectKey")
    metadata: Optional[ObjectMetadataResponse] = None


class ObjectListResponse(CamelModel):
    folder: str
    count: int
    objects: List[ObjectMetadataResponse]


class DeleteFileResponse(CamelModel):
    object_key: str = Field(..., alias="objectKey")
    deleted: bool = True
    message: str


class ConfirmBatchItem(CamelModel):
    object_key: str = Field(..., alias="objectKey")
    metadata: Optional[ObjectMetadataResponse] = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(default=None, alias="errorKind")


class ConfirmBatchResponse(CamelModel):
    """Per-object outcomes of a batch confirmation."""

    folder: str
    results: List[ConfirmBatchItem]
    confirmed_count: int = Field(..., alias="confirmedCount")
    failed_count: int = Field(..., alias="failedCount")
