"""
Value objects passed between the upload services.

The gateway keeps no local database; these are plain dataclasses that only
live for the duration of a request.
"""
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, BinaryIO, Dict, List, Optional, Union

from upload_gateway.models.enums import FolderCategory, SourceKind

UploadSource = Union[bytes, bytearray, BinaryIO, AsyncIterator[bytes]]


@dataclass
class TempArtifact:
    """A disk-backed staging file owned by exactly one transfer."""
    path: Path
    size_bytes: int = 0
    removed: bool = False


@dataclass
class UploadRequest:
    """A file presented to the gateway together with its destination."""
    category: FolderCategory
    original_name: str
    declared_content_type: str
    source: Optional[UploadSource] = None
    declared_size_bytes: Optional[int] = None
    temp_artifact: Optional[TempArtifact] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def source_kind(self) -> SourceKind:
        if isinstance(self.source, (bytes, bytearray)):
            return SourceKind.BUFFER
        if self.source is not None or self.temp_artifact is not None:
            return SourceKind.STREAM
        return SourceKind.NONE

    @property
    def has_source(self) -> bool:
        return self.source_kind is not SourceKind.NONE

    @property
    def known_size_bytes(self) -> Optional[int]:
        """Size hint, else the staged or buffered size when one is at hand."""
        if self.declared_size_bytes is not None:
            return self.declared_size_bytes
        if self.temp_artifact is not None:
            return self.temp_artifact.size_bytes
        if isinstance(self.source, (bytes, bytearray)):
            return len(self.source)
        return None


@dataclass
class UploadResult:
    """Built only after the store confirmed the write."""
    object_key: str
    public_access_url: str
    original_name: str
    size_bytes: int
    category: FolderCategory
    content_type: str
    etag: Optional[str] = None


@dataclass
class PresignedTicket:
    """Time-boxed credential for a single direct PUT."""
    object_key: str
    put_url: str
    expires_at_epoch: int
    permanent_access_url: str
    content_type: str
    ttl_seconds: int
    original_name: str
    category: FolderCategory


@dataclass
class ObjectMetadata:
    """Result of a HEAD on a stored object."""
    key: str
    size_bytes: int
    content_type: Optional[str]
    last_modified: Optional[datetime]
    etag: Optional[str]
    user_metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class RateLimitDecision:
    admitted: bool
    retry_after_ms: int = 0


@dataclass
class PurgeReport:
    """Outcome of an age-based purge of one category."""
    category: FolderCategory
    cutoff: datetime
    deleted_count: int = 0
    deleted_keys: List[str] = field(default_factory=list)
    failed_keys: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "cutoff": self.cutoff.isoformat(),
            "deleted_count": self.deleted_count,
            "deleted_keys": list(self.deleted_keys),
            "failed_keys": dict(self.failed_keys),
            "dry_run": self.dry_run,
        }


@dataclass
class SkippedFile:
    original_name: str
    error_kind: str
    message: str
    caller_input: bool = True


@dataclass
class BatchUploadResult:
    """Per-file outcomes of a multiple-file upload."""
    results: List[UploadResult] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    requested_count: int = 0

    @property
    def uploaded_count(self) -> int:
        return len(self.results)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)
