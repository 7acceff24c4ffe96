"""
Custom exceptions for object storage operations.

Every exception carries a stable ``error_kind`` and the HTTP status the API
layer answers with.
"""
from typing import Any, Dict, Optional

from fastapi import status


class StorageError(Exception):
    """Base exception for storage errors."""

    error_kind = "StoreError"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        original_exception: Optional[Exception] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception
        self.metadata = metadata or {}

    def __str__(self) -> str:
        base = self.message
        if self.metadata:
            base += f" | Metadata: {self.metadata}"
        if self.original_exception:
            base += f" | Original: {str(self.original_exception)}"
        return base


class StoreConnectionError(StorageError):
    """Raised when the store cannot be reached or the bucket cannot be bootstrapped."""

    error_kind = "ConnectionError"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(
        self,
        endpoint: str,
        original_exception: Optional[Exception] = None,
        bucket: Optional[str] = None,
    ):
        message = f"Unable to connect to object storage at '{endpoint}'"
        metadata: Dict[str, Any] = {"endpoint": endpoint}
        if bucket:
            metadata["bucket"] = bucket
        super().__init__(message, original_exception, metadata)


class StoreError(StorageError):
    """Raised on an unexpected store-side failure."""

    def __init__(
        self,
        operation: str,
        original_exception: Optional[Exception] = None,
        key: Optional[str] = None,
    ):
        message = f"Object storage operation '{operation}' failed"
        metadata: Dict[str, Any] = {"operation": operation}
        if key:
            metadata["key"] = key
        super().__init__(message, original_exception, metadata)


class TransientStoreError(StoreError):
    """Raised on network hiccups, timeouts and 5xx/SlowDown answers."""

    error_kind = "StoreError.Transient"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ObjectNotFoundError(StorageError):
    """Raised when object doesn't exist in storage."""

    error_kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(
        self,
        bucket: str,
        key: str,
        original_exception: Optional[Exception] = None,
    ):
        message = f"Object '{key}' not found in bucket '{bucket}'"
        metadata = {"bucket": bucket, "key": key}
        super().__init__(message, original_exception, metadata)
        self.key = key


class UploadError(StorageError):
    """Raised on upload failures."""

    error_kind = "UploadError"

    def __init__(
        self,
        bucket: str,
        key: str,
        original_exception: Optional[Exception] = None,
        size: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        message = f"Failed to upload file to bucket '{bucket}' with key '{key}'"
        if reason:
            message += f": {reason}"
        metadata: Dict[str, Any] = {"bucket": bucket, "key": key}
        if size is not None:
            metadata["size"] = size
        super().__init__(message, original_exception, metadata)
        self.key = key


class TransientUploadError(UploadError):
    """Upload failed on a network or store hiccup; eligible for one fallback."""

    error_kind = "UploadError.Transient"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class UploadTimeoutError(UploadError):
    """Upload exceeded the overall transfer timeout."""

    error_kind = "UploadError.Timeout"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
