"""HTTP push adapter for chat and mobile push providers (httpx)."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

import httpx

from ..delivery import Channel, DeliveryRecord, OutboundMessage
from ..ports.adapter import AdapterHealth
from .batching import DEFAULT_SUB_BATCH_SIZE, BatchingChannelAdapter

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
REQUEST_ID_HEADER = "X-Request-ID"


def sign(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class HttpPushAdapter(BatchingChannelAdapter):
    """
    POSTs one JSON document per message to a push provider endpoint.

    Works for ``chat_push`` and ``mobile_push``. Pass ``client`` (or
    ``transport``) to share a connection pool or to stub the provider in
    tests; a client created here is closed by :meth:`aclose`.
    """

    def __init__(
        self,
        channel: Channel,
        endpoint: str,
        *,
        auth_token: str | None = None,
        secret: str | None = None,
        health_url: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        sub_batch_delay: float = 0.1,
    ) -> None:
        if channel not in (Channel.CHAT_PUSH, Channel.MOBILE_PUSH):
            raise ValueError(f"HttpPushAdapter does not support {channel.value}")
        super().__init__(sub_batch_size=sub_batch_size, sub_batch_delay=sub_batch_delay)
        self.channel = channel
        self.endpoint = endpoint
        self.secret = secret
        self.health_url = health_url
        headers = {"User-Agent": "notification-engine/0.1.0"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers=headers, transport=transport
        )

    def build_body(self, message: OutboundMessage) -> dict[str, Any]:
        return {
            "to": message.recipient,
            "channel": self.channel.value,
            "id": message.work_item_id,
            "payload": message.payload,
        }

    async def send(self, message: OutboundMessage) -> DeliveryRecord:
        if not message.recipient:
            return DeliveryRecord.failed(
                message.recipient, self.channel, error="missing recipient"
            )
        body = json.dumps(
            self.build_body(message), separators=(",", ":"), sort_keys=True, default=str
        ).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[SIGNATURE_HEADER] = sign(body, self.secret)

        try:
            response = await self._client.post(self.endpoint, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "%s push to %s rejected: HTTP %d",
                self.channel.value,
                message.recipient,
                e.response.status_code,
            )
            return DeliveryRecord.failed(
                message.recipient, self.channel, error=f"HTTP {e.response.status_code}"
            )
        except httpx.HTTPError as e:
            logger.error("%s push to %s failed: %s", self.channel.value, message.recipient, e)
            return DeliveryRecord.failed(
                message.recipient, self.channel, error=str(e) or type(e).__name__
            )

        return DeliveryRecord.sent(
            message.recipient,
            self.channel,
            provider_id=response.headers.get(REQUEST_ID_HEADER),
        )

    async def health_check(self) -> AdapterHealth:
        if self._client.is_closed:
            return AdapterHealth(status="unhealthy", detail={"error": "client closed"})
        if not self.health_url:
            return AdapterHealth(status="healthy", detail={"endpoint": self.endpoint})
        try:
            response = await self._client.get(self.health_url)
        except httpx.HTTPError as e:
            return AdapterHealth(status="unhealthy", detail={"error": str(e)})
        status = "healthy" if response.is_success else "unhealthy"
        return AdapterHealth(status=status, detail={"status_code": response.status_code})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
