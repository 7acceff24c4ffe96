"""
Custom exception classes and FastAPI handlers.

Caller-input errors are raised before any store call is made and are never
retried. Store failures live in ``upload_gateway.integrations.storage_exceptions``.
"""
import math
from typing import Any, Dict, Iterable, List, Optional

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

from upload_gateway.integrations.storage_exceptions import StorageError

logger = structlog.get_logger(__name__)


class AppException(Exception):
    """Base application exception."""

    error_kind = "AppError"

    def __init__(
        self,
        status_code: int,
        detail: str,
        headers: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.detail = detail
        self.headers = headers
        self.extra = extra or {}
        super().__init__(detail)


class CallerInputError(AppException):
    """Base for errors caused by the request itself."""


class InvalidCategoryError(CallerInputError):
    """Destination folder is not one of the known categories."""

    error_kind = "InvalidCategory"

    def __init__(self, category: Any, valid: Iterable[str] = ()):
        self.category = category
        detail = f"Invalid folder '{category}'"
        valid = list(valid)
        if valid:
            detail += f". Valid folders: {', '.join(valid)}"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            extra={"validFolders": valid} if valid else None,
        )


class DisallowedContentTypeError(CallerInputError):
    """Content type is not in the category allow-list."""

    error_kind = "DisallowedContentType"

    def __init__(self, category: str, content_type: str, allowed: Iterable[str] = ()):
        self.category = category
        self.content_type = content_type
        allowed = sorted(allowed)
        super().__init__(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Content type '{content_type}' is not allowed in folder '{category}'",
            extra={"allowedTypes": allowed} if allowed else None,
        )


class SizeExceededError(CallerInputError):
    """File is larger than the category maximum."""

    error_kind = "SizeExceeded"

    def __init__(self, category: str, size_bytes: int, max_size_bytes: int):
        self.category = category
        self.size_bytes = size_bytes
        self.max_size_bytes = max_size_bytes
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=(
                f"File size {size_bytes} bytes exceeds the {max_size_bytes} byte "
                f"limit for folder '{category}'"
            ),
            extra={"maxSizeBytes": max_size_bytes},
        )


class StrategyUnavailableError(CallerInputError):
    """No transfer strategy can serve the request as given."""

    error_kind = "StrategyUnavailable"

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class InvalidExpirationError(CallerInputError):
    """Requested URL lifetime is outside what a SigV4 signature allows."""

    error_kind = "InvalidExpiration"

    def __init__(self, detail: str, max_seconds: int):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            extra={"maxExpiresIn": max_seconds},
        )


class InvalidBatchError(CallerInputError):
    """Batch request is empty or larger than allowed."""

    error_kind = "InvalidBatch"

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ObjectFolderMismatchError(CallerInputError):
    """Object key does not live under the folder it was presented with."""

    error_kind = "ObjectFolderMismatch"

    def __init__(self, key: str, category: str):
        self.key = key
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Object '{key}' does not belong to folder '{category}'",
        )


class TooManyFilesError(CallerInputError):
    """More files than a multiple-file upload accepts."""

    error_kind = "TooManyFiles"

    def __init__(self, count: int, max_files: int):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Received {count} files; at most {max_files} are accepted per request",
            extra={"maxFiles": max_files},
        )


class RateLimitedError(AppException):
    """Client exceeded its per-window budget."""

    error_kind = "RateLimited"

    def __init__(self, retry_after_ms: int, operation: str = "request"):
        self.retry_after_ms = retry_after_ms
        retry_after_seconds = max(1, math.ceil(retry_after_ms / 1000))
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many {operation} requests. Try again in {retry_after_seconds} seconds",
            headers={"Retry-After": str(retry_after_seconds)},
            extra={"retryAfterMs": retry_after_ms},
        )


class BatchUploadFailedError(AppException):
    """Every file of a multiple-file upload failed."""

    error_kind = "BatchUploadFailed"

    def __init__(self, skipped: List[Dict[str, Any]], caller_input_only: bool):
        self.skipped = skipped
        super().__init__(
            status_code=(
                status.HTTP_400_BAD_REQUEST if caller_input_only else status.HTTP_502_BAD_GATEWAY
            ),
            detail=f"All {len(skipped)} files failed to upload",
            extra={"skipped": skipped},
        )


def _hide_details(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.is_production)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Global exception handler for AppException instances.

    Args:
        request: FastAPI request object
        exc: AppException instance

    Returns:
        JSONResponse with error details
    """
    content = {"detail": exc.detail, "errorKind": exc.error_kind}
    content.update(exc.extra)
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers
    )


async def storage_exception_handler(request: Request, exc: StorageError) -> JSONResponse:
    """
    Render store failures; the underlying store error text is only shown
    outside production.
    """
    logger.warning(
        "storage_error_response",
        error_kind=exc.error_kind,
        error=str(exc),
        path=request.url.path,
    )
    detail = exc.message if _hide_details(request) else str(exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "errorKind": exc.error_kind},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unexpected errors."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )
    detail = "Internal server error" if _hide_details(request) else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": detail, "errorKind": "InternalError"},
    )
