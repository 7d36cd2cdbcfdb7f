"""In-memory channel adapter for tests and local development."""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING

from ..delivery import Channel, DeliveryRecord, OutboundMessage
from ..ports.adapter import AdapterHealth
from .batching import DEFAULT_SUB_BATCH_SIZE, BatchingChannelAdapter

if TYPE_CHECKING:
    from collections.abc import Iterable


class InMemoryChannelAdapter(BatchingChannelAdapter):
    """Records every message it is asked to send.

    Messages to a recipient in ``fail_recipients`` fail with ``error``;
    ``batch_error`` makes the whole ``send_batch`` call raise; ``delay``
    slows each send down.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        fail_recipients: Iterable[str] = (),
        error: str = "simulated delivery failure",
        delay: float = 0.0,
        batch_error: Exception | None = None,
        healthy: bool = True,
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        sub_batch_delay: float = 0.0,
    ) -> None:
        super().__init__(sub_batch_size=sub_batch_size, sub_batch_delay=sub_batch_delay)
        self.channel = channel
        self.fail_recipients = set(fail_recipients)
        self.error = error
        self.delay = delay
        self.batch_error = batch_error
        self.healthy = healthy
        self.sent: list[OutboundMessage] = []
        self.failed: list[OutboundMessage] = []
        self.batch_calls = 0
        self.closed = False

    async def send(self, message: OutboundMessage) -> DeliveryRecord:
        if self.delay:
            await asyncio.sleep(self.delay)
        if message.recipient in self.fail_recipients:
            self.failed.append(message)
            return DeliveryRecord.failed(message.recipient, self.channel, self.error)
        self.sent.append(message)
        return DeliveryRecord.sent(
            message.recipient, self.channel, provider_id=str(uuid.uuid4())
        )

    async def send_batch(self, messages: list[OutboundMessage]) -> list[DeliveryRecord]:
        self.batch_calls += 1
        if self.batch_error is not None:
            raise self.batch_error
        return await super().send_batch(messages)

    async def health_check(self) -> AdapterHealth:
        return AdapterHealth(status="healthy" if self.healthy else "unhealthy")

    async def aclose(self) -> None:
        self.closed = True

    def sent_ids(self) -> list[str]:
        return [m.work_item_id for m in self.sent]

    def assert_sent(self, work_item_id: str) -> None:
        if work_item_id not in self.sent_ids():
            raise AssertionError(
                f"Work item {work_item_id} was not sent on {self.channel.value}"
            )

    def clear(self) -> None:
        self.sent.clear()
        self.failed.clear()
        self.batch_calls = 0
