"""
Outbound delivery adapters for the Funnel Recovery Engine.

An adapter delivers one message on one channel and reports the outcome as
a DeliveryResult. Adapters return failures instead of raising, so the
dispatcher can leave the send pending for a retry.

Adapters:
    - CleverTapAdapter: CleverTap send API (push / WhatsApp / SMS) via httpx
    - LoggingDeliveryAdapter: logs the message and reports a mock success;
      used when no CleverTap credentials are configured
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from src.config.catalog import Channel
from src.config.settings import EngineSettings

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt."""

    success: bool
    error: str | None = None
    mock: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None, mock: bool = False) -> DeliveryResult:
        return cls(success=True, mock=mock, data=data or {})

    @classmethod
    def failed(cls, error: str) -> DeliveryResult:
        return cls(success=False, error=error)


class DeliveryAdapter(Protocol):
    """Anything that can deliver a message to a user on a channel."""

    async def send(
        self,
        user_id: str,
        message: str,
        channel: str,
        experiment_id: str,
    ) -> DeliveryResult: ...


class LoggingDeliveryAdapter:
    """Logs instead of sending. Every call succeeds."""

    async def send(
        self,
        user_id: str,
        message: str,
        channel: str,
        experiment_id: str,
    ) -> DeliveryResult:
        logger.info(
            "Mock delivery of experiment %s to user %s via %s: %s",
            experiment_id, user_id, channel, message,
        )
        return DeliveryResult.ok(mock=True)


class CleverTapAdapter:
    """
    Delivers through the CleverTap send API.

    Unknown channels go to the push endpoint. HTTP errors, non-2xx responses
    and transport failures all become a failed DeliveryResult.

    Args:
        account_id: CleverTap account id
        passcode: CleverTap passcode
        timeout: Per-request timeout in seconds
        client: Optional shared httpx.AsyncClient (tests inject a mock transport)
    """

    BASE_URL = "https://api.clevertap.com/1/send"
    ENDPOINTS: dict[str, str] = {
        Channel.PUSH: f"{BASE_URL}/push.json",
        Channel.WHATSAPP: f"{BASE_URL}/whatsapp.json",
        Channel.SMS: f"{BASE_URL}/sms.json",
    }

    def __init__(
        self,
        account_id: str,
        passcode: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._account_id = account_id
        self._passcode = passcode
        self._timeout = timeout
        self._client = client

    def endpoint_for(self, channel: str) -> str:
        return self.ENDPOINTS.get(channel, self.ENDPOINTS[Channel.PUSH])

    @staticmethod
    def build_payload(user_id: str, message: str, experiment_id: str) -> dict[str, Any]:
        deep_link = f"stage://experiment/{experiment_id}"
        return {
            "to": {"Identity": [user_id]},
            "tag_group": "experiment_engine",
            "respect_frequency_caps": False,
            "content": {
                "title": "Stage",
                "body": message,
                "platform_specific": {
                    "android": {"deep_link": deep_link},
                    "ios": {"deep_link": deep_link},
                },
            },
        }

    async def send(
        self,
        user_id: str,
        message: str,
        channel: str,
        experiment_id: str,
    ) -> DeliveryResult:
        headers = {
            "X-CleverTap-Account-Id": self._account_id,
            "X-CleverTap-Passcode": self._passcode,
            "Content-Type": "application/json",
        }
        payload = self.build_payload(user_id, message, experiment_id)
        url = self.endpoint_for(channel)

        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "CleverTap rejected experiment %s: HTTP %s",
                experiment_id, e.response.status_code,
            )
            return DeliveryResult.failed(f"HTTP {e.response.status_code}: {e.response.text[:200]}")
        except httpx.HTTPError as e:
            logger.warning("CleverTap request for experiment %s failed: %s", experiment_id, e)
            return DeliveryResult.failed(f"{type(e).__name__}: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        return DeliveryResult.ok(data=data)


def build_delivery_adapter(settings: EngineSettings) -> DeliveryAdapter:
    """CleverTap when credentials are configured, the logging adapter otherwise."""
    if settings.has_clevertap_credentials:
        return CleverTapAdapter(
            account_id=settings.clevertap_account_id,
            passcode=settings.clevertap_passcode,
            timeout=settings.delivery_timeout_seconds,
        )
    logger.warning("CleverTap credentials not configured; using mock delivery")
    return LoggingDeliveryAdapter()


__all__ = [
    "CleverTapAdapter",
    "DeliveryAdapter",
    "DeliveryResult",
    "LoggingDeliveryAdapter",
    "build_delivery_adapter",
]
