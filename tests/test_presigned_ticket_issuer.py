"""
Tests for presigned ticket issuance and confirmation.
"""
import time
from urllib.parse import parse_qs, urlparse

import pytest

from tests.conftest import MIB, client_error
from upload_gateway.core.exceptions import (
    DisallowedContentTypeError,
    InvalidBatchError,
    InvalidCategoryError,
    InvalidExpirationError,
    ObjectFolderMismatchError,
    SizeExceededError,
    StrategyUnavailableError,
)
from upload_gateway.integrations.storage_exceptions import ObjectNotFoundError, TransientStoreError
from upload_gateway.models.enums import FolderCategory


@pytest.fixture
def issuer(services):
    return services.ticket_issuer


class TestIssue:
    """Tests for single ticket issuance."""

    def test_ticket_expiry_matches_ttl(self, issuer):
        """A 60 second ticket expires 60 seconds after issuance."""
        before = int(time.time())
        ticket = issuer.issue("Uploads", "notes.txt", "text/plain", 60)
        after = int(time.time())

        assert before + 60 <= ticket.expires_at_epoch <= after + 60
        assert ticket.ttl_seconds == 60
        assert ticket.category is FolderCategory.UPLOADS
        assert ticket.object_key.startswith("Uploads/")
        assert ticket.object_key.endswith(".txt")

        query = parse_qs(urlparse(ticket.put_url).query)
        assert query["X-Amz-Expires"] == ["60"]
        assert ticket.object_key in ticket.put_url
        assert ticket.permanent_access_url == f"http://test/api/v1/files/{ticket.object_key}"

    def test_default_ttl_is_used(self, issuer, settings):
        """Omitting the TTL uses the configured expiration."""
        ticket = issuer.issue("Images", "a.png", "image/png")
        assert ticket.ttl_seconds == settings.presigned_url_expiration

    def test_content_type_is_normalized(self, issuer):
        """The signed content type drops parameters."""
        ticket = issuer.issue("Uploads", "a.txt", "Text/Plain; charset=utf-8", 60)
        assert ticket.content_type == "text/plain"

    def test_server_mediated_folder_is_refused(self, issuer, fake_s3):
        """Documents never get a direct upload ticket."""
        with pytest.raises(StrategyUnavailableError):
            issuer.issue("Documents", "scan.pdf", "application/pdf", 60)
        assert fake_s3.calls_to("generate_presigned_url") == 0

    @pytest.mark.parametrize("ttl", [0, -5, 604801])
    def test_ttl_out_of_range_is_refused(self, issuer, ttl):
        """TTL must be between one second and seven days."""
        with pytest.raises(InvalidExpirationError) as exc_info:
            issuer.issue("Uploads", "a.txt", "text/plain", ttl)
        assert exc_info.value.extra == {"maxExpiresIn": 604800}

    def test_seven_day_ttl_is_accepted(self, issuer):
        """The store's maximum signature lifetime is allowed."""
        assert issuer.issue("Uploads", "a.txt", "text/plain", 604800).ttl_seconds == 604800

    def test_policy_violations_are_raised(self, issuer):
        """Folder policy is checked before signing."""
        with pytest.raises(InvalidCategoryError):
            issuer.issue("Videos", "a.mp4", "video/mp4", 60)
        with pytest.raises(DisallowedContentTypeError):
            issuer.issue("Profiles", "a.gif", "image/gif", 60)
        with pytest.raises(SizeExceededError):
            issuer.issue("Profiles", "a.png", "image/png", 60, size_bytes=11 * MIB)

    def test_read_url(self, issuer):
        """Read URLs are signed GETs with the read TTL."""
        url = issuer.issue_read_url("Images/1-abc.png", 120)
        assert "op=get_object" in url
        assert "X-Amz-Expires=120" in url


class TestIssueBatch:
    """Tests for batch issuance."""

    def test_mixed_outcomes_are_reported_per_file(self, issuer):
        """Failing entries carry an error; others carry a ticket."""
        outcomes = issuer.issue_batch(
            "Images",
            [
                {"file_name": "a.png", "content_type": "image/png", "size_bytes": 1024},
                {"file_name": "b.pdf", "content_type": "application/pdf"},
                {"file_name": "c.jpg", "content_type": "image/jpeg"},
            ],
            300,
        )
        assert [o["file_name"] for o in outcomes] == ["a.png", "b.pdf", "c.jpg"]
        assert outcomes[0]["ticket"].ttl_seconds == 300
        assert outcomes[1]["error_kind"] == "DisallowedContentType"
        assert "ticket" in outcomes[2]

    def test_oversized_batch_is_refused(self, issuer, settings):
        """More entries than the batch limit fail the whole request."""
        files = [{"file_name": f"{i}.png", "content_type": "image/png"} for i in range(settings.max_presigned_batch + 1)]
        with pytest.raises(InvalidBatchError):
            issuer.issue_batch("Images", files)

    def test_empty_batch_is_refused(self, issuer):
        """At least one entry is required."""
        with pytest.raises(InvalidBatchError):
            issuer.issue_batch("Images", [])

    def test_total_declared_size_is_capped(self, issuer):
        """Declared sizes may not add up to more than 100 MiB."""
        files = [{"file_name": f"{i}.png", "content_type": "image/png", "size_bytes": 40 * MIB} for i in range(3)]
        with pytest.raises(SizeExceededError):
            issuer.issue_batch("Images", files)


class TestConfirm:
    """Tests for post-upload confirmation."""

    @pytest.mark.asyncio
    async def test_confirm_returns_metadata(self, issuer, fake_s3):
        """A correctly sized object is confirmed."""
        fake_s3.put("Images/1-abc.png", b"x" * 2048, "image/png", {"original-name": "cat%20pic.png"})
        meta = await issuer.confirm("Images/1-abc.png", "Images")
        assert meta.size_bytes == 2048
        assert meta.content_type == "image/png"
        assert meta.user_metadata["original-name"] == "cat pic.png"

    @pytest.mark.asyncio
    async def test_oversized_object_is_deleted(self, issuer, fake_s3):
        """Objects above the folder limit are removed on confirmation."""
        fake_s3.put("Profiles/1-abc.png", b"x" * (10 * MIB + 1), "image/png")
        with pytest.raises(SizeExceededError):
            await issuer.confirm("Profiles/1-abc.png", "Profiles")
        assert "Profiles/1-abc.png" not in fake_s3.objects
        assert fake_s3.calls_to("delete_object") == 1

    @pytest.mark.asyncio
    async def test_missing_object_raises_not_found(self, issuer):
        """Nothing uploaded yet means 404."""
        with pytest.raises(ObjectNotFoundError):
            await issuer.confirm("Images/1-missing.png", "Images")

    @pytest.mark.asyncio
    async def test_key_outside_folder_is_refused(self, issuer, fake_s3):
        """A key can only be confirmed against its own folder."""
        fake_s3.put("Images/1-abc.png", b"x")
        with pytest.raises(ObjectFolderMismatchError):
            await issuer.confirm("Images/1-abc.png", "Profiles")
        assert fake_s3.calls_to("head_object") == 0


class TestConfirmBatch:
    """Tests for confirming several direct uploads at once."""

    @pytest.mark.asyncio
    async def test_outcomes_are_reported_per_key(self, issuer, fake_s3):
        """Each key is confirmed or carries its own error."""
        fake_s3.put("Profiles/1-ok.png", b"x" * 2048, "image/png")
        fake_s3.put("Profiles/2-big.png", b"x" * (10 * MIB + 1), "image/png")
        fake_s3.put("Images/3-elsewhere.png", b"x")

        outcomes = await issuer.confirm_batch(
            "Profiles",
            ["Profiles/1-ok.png", "Profiles/9-missing.png", "Profiles/2-big.png", "Images/3-elsewhere.png"],
        )

        assert [o["object_key"] for o in outcomes] == [
            "Profiles/1-ok.png",
            "Profiles/9-missing.png",
            "Profiles/2-big.png",
            "Images/3-elsewhere.png",
        ]
        assert outcomes[0]["metadata"].size_bytes == 2048
        assert outcomes[1]["error_kind"] == "NotFound"
        assert outcomes[2]["error_kind"] == "SizeExceeded"
        assert outcomes[3]["error_kind"] == "ObjectFolderMismatch"
        assert "Profiles/2-big.png" not in fake_s3.objects
        assert "Images/3-elsewhere.png" in fake_s3.objects

    @pytest.mark.asyncio
    async def test_empty_batch_is_refused(self, issuer):
        """At least one key is required."""
        with pytest.raises(InvalidBatchError):
            await issuer.confirm_batch("Images", [])

    @pytest.mark.asyncio
    async def test_oversized_batch_is_refused(self, issuer, settings, fake_s3):
        """More keys than the batch limit fail before any store call."""
        keys = [f"Images/{i}-a.png" for i in range(settings.max_presigned_batch + 1)]
        with pytest.raises(InvalidBatchError):
            await issuer.confirm_batch("Images", keys)
        assert fake_s3.calls_to("head_object") == 0

    @pytest.mark.asyncio
    async def test_unknown_folder_fails_the_request(self, issuer):
        """The folder is validated once for the whole batch."""
        with pytest.raises(InvalidCategoryError):
            await issuer.confirm_batch("Videos", ["Videos/1-a.mp4"])

    @pytest.mark.asyncio
    async def test_store_outage_propagates(self, issuer, fake_s3):
        """A transient store failure is not reported as a per-key outcome."""
        fake_s3.put("Images/1-a.png", b"x")
        fake_s3.fail_on["head_object"] = client_error("SlowDown", 503, "HeadObject")
        with pytest.raises(TransientStoreError):
            await issuer.confirm_batch("Images", ["Images/1-a.png"])
