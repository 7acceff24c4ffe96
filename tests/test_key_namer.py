"""
Tests for object key naming.
"""
import re

from upload_gateway.models.enums import FolderCategory
from upload_gateway.services.key_namer import KeyNamer

KEY_PATTERN = re.compile(r"^(?P<folder>[A-Za-z]+)/(?P<ms>\d+)-(?P<token>[0-9a-f]{12})\.(?P<ext>[a-z0-9]+)$")


class TestKeyNamer:
    """Tests for KeyNamer."""

    def test_key_format(self):
        """Keys carry the folder, a millisecond timestamp, a token and the extension."""
        namer = KeyNamer(clock_ms=lambda: 1700000000123)
        key = namer.next_key(FolderCategory.IMAGES, "Holiday Photo.PNG")
        match = KEY_PATTERN.match(key)
        assert match is not None
        assert match["folder"] == "Images"
        assert match["ms"] == "1700000000123"
        assert match["ext"] == "png"

    def test_extension_falls_back_to_content_type(self):
        """Names without a suffix use the content type's extension."""
        key = KeyNamer().next_key(FolderCategory.DOCUMENTS, "scan", "application/pdf")
        assert key.endswith(".pdf")

    def test_extension_falls_back_to_bin(self):
        """Unknown suffix and type produce a .bin key."""
        key = KeyNamer().next_key(FolderCategory.UPLOADS, "../../etc/passwd", "application/x-unknown")
        assert key.startswith("Uploads/")
        assert key.endswith(".bin")
        assert ".." not in key

    def test_keys_are_unique_within_one_millisecond(self):
        """100k keys minted at a frozen clock never collide."""
        namer = KeyNamer(clock_ms=lambda: 42)
        keys = {namer.next_key(FolderCategory.UPLOADS, "a.txt") for _ in range(100_000)}
        assert len(keys) == 100_000
