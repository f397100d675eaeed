"""
Error response shaping.
"""
from unittest.mock import patch

import pytest

from catalog_addon.core.error_handler import sanitize_error_message
from catalog_addon.core.exceptions import LinkNotFoundError


class TestSanitizeErrorMessage:
    def test_plain_message_passes_through(self):
        assert sanitize_error_message("Upsell not found") == "Upsell not found"

    def test_driver_details_hidden(self):
        message = sanitize_error_message("asyncpg.exceptions.UniqueViolationError: duplicate key")

        assert "asyncpg" not in message
        assert message.startswith("An internal error occurred")

    def test_long_message_truncated(self):
        message = sanitize_error_message("x" * 500)

        assert len(message) == 203
        assert message.endswith("...")

    def test_debug_keeps_everything(self):
        with patch("catalog_addon.core.error_handler.settings.DEBUG", True):
            assert sanitize_error_message("password mismatch") == "password mismatch"


def test_exception_payload():
    exc = LinkNotFoundError(42)

    assert exc.status_code == 404
    assert exc.to_dict()["code"] == "LINK_NOT_FOUND"


@pytest.mark.asyncio
async def test_missing_upsell_renders_json(client, admin_headers):
    resp = await client.get("/api/upsells/9999", headers=admin_headers)

    assert resp.status_code == 404
    body = resp.json()
    assert body["code"] == "UPSELL_NOT_FOUND"
    assert body["error"] == "upsell_not_found"
    assert set(body) == {"error", "code", "message", "details"}
