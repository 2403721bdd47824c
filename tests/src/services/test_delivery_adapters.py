"""
Tests for the delivery adapters (src/services/delivery_adapters.py).

CleverTap calls go through httpx.MockTransport; no network is used.
"""

from __future__ import annotations

import json

import httpx
import pytest

from src.config.settings import EngineSettings
from src.services.delivery_adapters import (
    CleverTapAdapter,
    LoggingDeliveryAdapter,
    build_delivery_adapter,
)


def _adapter(handler) -> tuple[CleverTapAdapter, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CleverTapAdapter("acct-1", "secret", client=client), client


# =============================================================================
# CleverTapAdapter
# =============================================================================


class TestCleverTapAdapter:
    """Tests for the CleverTap send API adapter."""

    @pytest.mark.asyncio
    async def test_posts_payload_and_credentials(self) -> None:
        """Test the request carries identity, message, deep link and auth headers."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "success"})

        adapter, client = _adapter(handler)
        async with client:
            result = await adapter.send("u1", "Hello there", "whatsapp", "exp-1")

        assert result.success is True
        assert result.mock is False
        assert result.data == {"status": "success"}

        [request] = seen
        assert str(request.url) == "https://api.clevertap.com/1/send/whatsapp.json"
        assert request.headers["X-CleverTap-Account-Id"] == "acct-1"
        assert request.headers["X-CleverTap-Passcode"] == "secret"
        body = json.loads(request.content)
        assert body["to"] == {"Identity": ["u1"]}
        assert body["content"]["body"] == "Hello there"
        assert body["content"]["platform_specific"]["android"]["deep_link"] == "stage://experiment/exp-1"

    @pytest.mark.parametrize(
        ("channel", "path"),
        [
            ("push", "push.json"),
            ("sms", "sms.json"),
            ("email", "push.json"),
        ],
    )
    def test_endpoint_per_channel(self, channel: str, path: str) -> None:
        """Test unknown channels fall back to the push endpoint."""
        adapter = CleverTapAdapter("a", "p")
        assert adapter.endpoint_for(channel).endswith(path)

    @pytest.mark.asyncio
    async def test_http_error_becomes_failed_result(self) -> None:
        adapter, client = _adapter(lambda request: httpx.Response(401, text="bad passcode"))
        async with client:
            result = await adapter.send("u1", "Hi", "push", "exp-1")

        assert result.success is False
        assert result.error.startswith("HTTP 401")
        assert "bad passcode" in result.error

    @pytest.mark.asyncio
    async def test_transport_error_becomes_failed_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter, client = _adapter(handler)
        async with client:
            result = await adapter.send("u1", "Hi", "push", "exp-1")

        assert result.success is False
        assert result.error.startswith("ConnectError")

    @pytest.mark.asyncio
    async def test_non_json_success_body(self) -> None:
        adapter, client = _adapter(lambda request: httpx.Response(200, text="ok"))
        async with client:
            result = await adapter.send("u1", "Hi", "sms", "exp-1")

        assert result.success is True
        assert result.data == {}


# =============================================================================
# LoggingDeliveryAdapter and factory
# =============================================================================


@pytest.mark.asyncio
async def test_logging_adapter_reports_mock_success(caplog) -> None:
    caplog.set_level("INFO")
    result = await LoggingDeliveryAdapter().send("u1", "Hi", "push", "exp-9")

    assert result.success is True
    assert result.mock is True
    assert "exp-9" in caplog.text


def test_build_delivery_adapter_without_credentials() -> None:
    adapter = build_delivery_adapter(EngineSettings())
    assert isinstance(adapter, LoggingDeliveryAdapter)


def test_build_delivery_adapter_with_credentials() -> None:
    settings = EngineSettings(clevertap_account_id="acct", clevertap_passcode="pass")
    assert isinstance(build_delivery_adapter(settings), CleverTapAdapter)
