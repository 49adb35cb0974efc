"""HTTP client for the push relay that owns VAPID signing and delivery."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import httpx

from config import settings

logger = logging.getLogger(__name__)

DEFAULT_ICON = "/icon-512x512.png"
DEFAULT_BADGE = "/icon-192x192.png"


class DeliveryResult(str, Enum):
    SENT = "sent"
    GONE = "gone"  # subscription expired or was revoked by the browser
    FAILED = "failed"


class PushRelayClient:
    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.PUSH_RELAY_URL
        self._headers = {
            "Authorization": f"Bearer {api_key or settings.PUSH_RELAY_API_KEY}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout if timeout is not None else settings.PUSH_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PushRelayClient":
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def build_message(payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "title": payload.get("title"),
            "body": payload.get("body"),
            "icon": payload.get("icon") or DEFAULT_ICON,
            "badge": payload.get("badge") or DEFAULT_BADGE,
            "tag": payload.get("tag"),
            "data": payload.get("data") or {},
            "actions": payload.get("actions") or [],
        }

    async def send(self, subscription: Any, payload: dict[str, Any]) -> DeliveryResult:
        if self._client is None:
            raise RuntimeError("PushRelayClient must be used as an async context manager")
        body = {
            "subscription": {
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
            },
            "notification": self.build_message(payload),
        }
        try:
            resp = await self._client.post(self.url, headers=self._headers, json=body)
        except httpx.HTTPError as e:
            logger.warning("Push relay request failed for subscription %s: %s", subscription.id, e)
            return DeliveryResult.FAILED

        if resp.status_code in (404, 410):
            return DeliveryResult.GONE
        if resp.status_code >= 400:
            logger.warning(
                "Push relay rejected subscription %s: %s %s",
                subscription.id,
                resp.status_code,
                resp.text[:200],
            )
            return DeliveryResult.FAILED
        return DeliveryResult.SENT
