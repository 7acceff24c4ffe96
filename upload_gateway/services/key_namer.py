"""Object key naming."""
import time
import uuid
from typing import Callable, Optional, Union

from upload_gateway.integrations.storage_utils import extract_extension
from upload_gateway.models.enums import FolderCategory


class KeyNamer:
    """
    Derives ``{category}/{timestampMillis}-{token}.{ext}`` keys.

    The token is 12 hex characters of a uuid4, so keys are collision
    resistant without any shared state or locking.
    """

    TOKEN_LENGTH = 12

    def __init__(self, clock_ms: Optional[Callable[[], int]] = None):
        self._clock_ms = clock_ms or (lambda: time.time_ns() // 1_000_000)

    def next_key(
        self,
        category: Union[FolderCategory, str],
        original_name: Optional[str],
        content_type: Optional[str] = None,
    ) -> str:
        prefix = category.value if isinstance(category, FolderCategory) else str(category)
        token = uuid.uuid4().hex[: self.TOKEN_LENGTH]
        ext = extract_extension(original_name, content_type)
        return f"{prefix}/{self._clock_ms()}-{token}.{ext}"
