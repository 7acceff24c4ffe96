"""
Folder policy: the closed set of upload categories and what each accepts.

Validation is pure and performs no I/O, so it runs before any store call.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from upload_gateway.core.exceptions import (
    CallerInputError,
    DisallowedContentTypeError,
    InvalidCategoryError,
    SizeExceededError,
)
from upload_gateway.integrations.storage_utils import normalize_content_type
from upload_gateway.models.enums import FolderCategory

MIB = 1024 * 1024

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
_PHOTO_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})
_IMAGE_TYPES = _PHOTO_TYPES | {"image/gif"}
_DOCUMENT_TYPES = frozenset({"application/pdf", "application/msword", DOCX})


@dataclass(frozen=True)
class CategoryPolicy:
    category: FolderCategory
    max_size_bytes: int
    allowed_content_types: FrozenSet[str]
    server_mediated: bool
    description: str

    def allows(self, content_type: str) -> bool:
        return normalize_content_type(content_type) in self.allowed_content_types


DEFAULT_POLICIES: Mapping[FolderCategory, CategoryPolicy] = MappingProxyType({
    FolderCategory.PROFILES: CategoryPolicy(
        category=FolderCategory.PROFILES,
        max_size_bytes=10 * MIB,
        allowed_content_types=_PHOTO_TYPES,
        server_mediated=False,
        description="Profile pictures",
    ),
    FolderCategory.THUMBNAILS: CategoryPolicy(
        category=FolderCategory.THUMBNAILS,
        max_size_bytes=10 * MIB,
        allowed_content_types=_PHOTO_TYPES,
        server_mediated=False,
        description="Image thumbnails",
    ),
    FolderCategory.IMAGES: CategoryPolicy(
        category=FolderCategory.IMAGES,
        max_size_bytes=50 * MIB,
        allowed_content_types=_IMAGE_TYPES,
        server_mediated=False,
        description="Images and photos",
    ),
    # Documents always pass through the gateway
    FolderCategory.DOCUMENTS: CategoryPolicy(
        category=FolderCategory.DOCUMENTS,
        max_size_bytes=50 * MIB,
        allowed_content_types=_DOCUMENT_TYPES | {"image/jpeg", "image/jpg", "image/png"},
        server_mediated=True,
        description="Documents and scanned files",
    ),
    FolderCategory.UPLOADS: CategoryPolicy(
        category=FolderCategory.UPLOADS,
        max_size_bytes=50 * MIB,
        allowed_content_types=_IMAGE_TYPES | _DOCUMENT_TYPES | {"text/plain", "application/json"},
        server_mediated=False,
        description="General purpose uploads",
    ),
})


class FolderPolicy:
    """Validates a destination category, content type and size."""

    def __init__(self, policies: Optional[Mapping[FolderCategory, CategoryPolicy]] = None):
        self._policies = MappingProxyType(dict(policies or DEFAULT_POLICIES))

    def parse_category(self, category: Union[str, FolderCategory, Any]) -> FolderCategory:
        """
        Resolve a category from its exact name.

        Raises:
            InvalidCategoryError: Unknown or non-string categories fail closed
        """
        if isinstance(category, FolderCategory) and category in self._policies:
            return category
        if isinstance(category, str):
            for known in self._policies:
                if known.value == category:
                    return known
        raise InvalidCategoryError(category, valid=[c.value for c in self._policies])

    def policy_for(self, category: Union[str, FolderCategory]) -> CategoryPolicy:
        return self._policies[self.parse_category(category)]

    def validate(
        self,
        category: Union[str, FolderCategory],
        content_type: Optional[str],
        size_bytes: Optional[int] = None,
    ) -> CategoryPolicy:
        """
        Check a prospective upload against its category policy.

        Args:
            category: Destination folder
            content_type: Declared MIME type; parameters are ignored
            size_bytes: Known size, or None to skip the size check

        Returns:
            The category policy

        Raises:
            InvalidCategoryError: Unknown category
            DisallowedContentTypeError: Type not in the allow-list
            SizeExceededError: Size above the category maximum
        """
        policy = self.policy_for(category)
        normalized = normalize_content_type(content_type)
        if normalized not in policy.allowed_content_types:
            raise DisallowedContentTypeError(
                policy.category.value, content_type or "", policy.allowed_content_types
            )
        if size_bytes is not None and size_bytes > policy.max_size_bytes:
            raise SizeExceededError(policy.category.value, size_bytes, policy.max_size_bytes)
        return policy

    def check(
        self,
        category: Union[str, FolderCategory],
        content_type: Optional[str],
        size_bytes: Optional[int] = None,
    ) -> Optional[CallerInputError]:
        """Same as ``validate`` but returns the error instead of raising it."""
        try:
            self.validate(category, content_type, size_bytes)
        except CallerInputError as e:
            return e
        return None

    def describe(self) -> List[Dict[str, Any]]:
        """Category catalogue for the folder listing endpoint."""
        return [
            {
                "name": policy.category.value,
                "description": policy.description,
                "maxSizeBytes": policy.max_size_bytes,
                "allowedTypes": sorted(policy.allowed_content_types),
                "serverMediated": policy.server_mediated,
            }
            for policy in self._policies.values()
        ]
