"""
Models package.

Enums and request-scoped value objects; nothing here is persisted locally.
"""
from upload_gateway.models.enums import (
    FolderCategory,
    SourceKind,
    TransferPreference,
    TransferStrategy,
    UploadOperation,
    UploadState,
)
from upload_gateway.models.upload import (
    BatchUploadResult,
    ObjectMetadata,
    PresignedTicket,
    PurgeReport,
    RateLimitDecision,
    SkippedFile,
    TempArtifact,
    UploadRequest,
    UploadResult,
)

__all__ = [
    "BatchUploadResult",
    "FolderCategory",
    "ObjectMetadata",
    "PresignedTicket",
    "PurgeReport",
    "RateLimitDecision",
    "SkippedFile",
    "SourceKind",
    "TempArtifact",
    "TransferPreference",
    "TransferStrategy",
    "UploadOperation",
    "UploadRequest",
    "UploadResult",
    "UploadState",
]
