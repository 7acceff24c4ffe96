"""
Enum definitions for upload models.

This module defines Python enums for categories, transfer preferences and
states to ensure type safety and consistency across the application.
"""
from enum import Enum


class FolderCategory(str, Enum):
    """Destination folders; the value is also the object key prefix."""
    PROFILES = "Profiles"
    THUMBNAILS = "Thumbnails"
    DOCUMENTS = "Documents"
    IMAGES = "Images"
    UPLOADS = "Uploads"


class SourceKind(str, Enum):
    """How the bytes of an upload request are held."""
    BUFFER = "BUFFER"
    STREAM = "STREAM"
    NONE = "NONE"


class TransferPreference(str, Enum):
    """Caller preference for the transfer path."""
    AUTO = "AUTO"
    DIRECT_ONLY = "DIRECT_ONLY"  # presigned ticket
    STREAM_ONLY = "STREAM_ONLY"  # through the gateway


class TransferStrategy(str, Enum):
    """Path chosen by the router."""
    DIRECT = "DIRECT"
    STREAMED = "STREAMED"


class UploadState(str, Enum):
    """Lifecycle states logged per upload request."""
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    DIRECT_ISSUED = "DIRECT_ISSUED"
    STREAMING = "STREAMING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UploadOperation(str, Enum):
    """Rate-limited operations; each has its own per-client budget."""
    SINGLE_UPLOAD = "single_upload"
    BATCH_UPLOAD = "batch_upload"
    PRESIGNED = "presigned"
    BATCH_CONFIRM = "batch_confirm"
