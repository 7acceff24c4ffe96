"""
Tests for logging processors and request context binding.
"""
import pytest
import structlog

from upload_gateway.core.logging import drop_unset_context, redact_signed_urls


class TestProcessors:
    """Tests for the custom structlog processors."""

    def test_unset_fields_are_dropped(self):
        """None values never reach the renderer."""
        event = drop_unset_context(None, "info", {"event": "upload_state", "client_id": None, "size": 0})
        assert event == {"event": "upload_state", "size": 0}

    def test_signed_url_query_is_redacted(self):
        """Signatures and credentials are stripped from logged URLs."""
        url = (
            "https://minio:9000/uploads/Images/1-a.png"
            "?X-Amz-Algorithm=AWS4-HMAC-SHA256&X-Amz-Credential=key%2F20240101"
            "&X-Amz-Signature=deadbeef"
        )
        event = redact_signed_urls(None, "info", {"event": "ticket_issued", "url": url})
        assert event["url"] == "https://minio:9000/uploads/Images/1-a.png?[redacted]"
        assert "deadbeef" not in event["url"]

    def test_plain_values_are_untouched(self):
        """Permanent URLs and other strings pass through."""
        event = {"event": "upload_state", "url": "http://test/api/v1/files/Images/1-a.png?v=1"}
        assert redact_signed_urls(None, "info", dict(event)) == event


class TestRequestContext:
    """Tests for context bound by the request middleware."""

    @pytest.mark.asyncio
    async def test_request_fields_are_bound(self, app, client):
        """Handlers see the correlation id, caller and route in the log context."""

        async def context():
            return structlog.contextvars.get_contextvars()

        app.add_api_route("/context", context, methods=["GET"])
        response = await client.get(
            "/context", headers={"X-Correlation-ID": "corr-1", "X-Client-ID": "client-7"}
        )
        assert response.status_code == 200
        assert response.json() == {
            "correlation_id": "corr-1",
            "client_id": "client-7",
            "request_method": "GET",
            "request_path": "/context",
        }

    @pytest.mark.asyncio
    async def test_context_is_cleared_after_the_request(self, client):
        """Nothing leaks into the next request's context."""
        await client.get("/health", headers={"X-Client-ID": "client-7"})
        assert structlog.contextvars.get_contextvars() == {}
