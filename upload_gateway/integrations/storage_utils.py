"""
Object Storage Utility Functions

Helper functions for filename and content-type handling,
metadata construction, and retention cutoffs.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional
from urllib.parse import quote, unquote

# Extension used when neither the file name nor the content type gives one
DEFAULT_EXTENSION = "bin"

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
    "application/json": "json",
}

METADATA_ORIGINAL_NAME = "original-name"
METADATA_UPLOAD_DATE = "upload-date"


def normalize_content_type(content_type: Optional[str]) -> str:
    """
    Lowercase a content type and drop MIME parameters.

    Example:
        "Text/Plain; charset=utf-8" -> "text/plain"
    """
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal and invalid characters.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    # Remove path components, including Windows style ones
    filename = os.path.basename(filename.replace("\\", "/"))

    # Replace problematic characters
    invalid_chars = '<>:"|?*'
    for char in invalid_chars:
        filename = filename.replace(char, "_")
    filename = "".join(ch for ch in filename if ch.isprintable())

    # Limit length
    max_length = 255
    if len(filename) > max_length:
        name, ext = os.path.splitext(filename)
        name = name[: max_length - len(ext)]
        filename = name + ext

    return filename


def extract_extension(filename: Optional[str], content_type: Optional[str] = None) -> str:
    """
    Pick the object key extension.

    The lowercase suffix of the sanitized filename wins; otherwise the
    content type decides; otherwise ``bin``.
    """
    if filename:
        ext = os.path.splitext(sanitize_filename(filename))[1].lstrip(".").lower()
        ext = "".join(ch for ch in ext if ch.isalnum())
        if ext:
            return ext[:16]
    return CONTENT_TYPE_EXTENSIONS.get(normalize_content_type(content_type), DEFAULT_EXTENSION)


def build_upload_metadata(
    original_name: str,
    extra: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """
    Construct S3 user metadata for an uploaded object.

    S3 user metadata must be ASCII, so the original name is URL-quoted.

    Args:
        original_name: Name of the file as sent by the client
        extra: Additional caller supplied metadata
        now: Upload timestamp (defaults to the current UTC time)

    Returns:
        Dictionary of metadata tags for the S3 object
    """
    metadata = {str(k).lower(): quote(str(v), safe="") for k, v in (extra or {}).items()}
    metadata[METADATA_ORIGINAL_NAME] = quote(original_name, safe="")
    metadata[METADATA_UPLOAD_DATE] = (now or datetime.now(timezone.utc)).isoformat()
    return metadata


def decode_user_metadata(metadata: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Reverse the quoting applied by ``build_upload_metadata``."""
    return {k: unquote(v) for k, v in (metadata or {}).items()}


def parse_retention_date(retention_days: float, now: Optional[datetime] = None) -> datetime:
    """
    Calculate cutoff date for retention cleanup.

    Args:
        retention_days: Age in days past which objects are purged
        now: Reference time (defaults to the current UTC time)

    Returns:
        Timezone-aware datetime representing the cutoff (UTC)
    """
    return (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)


def format_storage_size(size_bytes: int) -> str:
    """
    Format byte size to human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.50 GB", "256.00 MB")
    """
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    size = float(size_bytes)
    unit_index = 0

    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1

    return f"{size:.2f} {units[unit_index]}"
