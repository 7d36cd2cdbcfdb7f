"""Base class for adapters that send a partition in paced sub-batches."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import TYPE_CHECKING

from ..delivery import Channel, DeliveryRecord, OutboundMessage
from ..ports.adapter import AdapterHealth

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

DEFAULT_SUB_BATCH_SIZE = 100


def chunked(
    messages: list[OutboundMessage], size: int
) -> Iterator[list[OutboundMessage]]:
    for start in range(0, len(messages), size):
        yield messages[start : start + size]


class BatchingChannelAdapter(abc.ABC):
    """
    Sends messages concurrently within a sub-batch and sleeps between
    sub-batches to stay under provider rate limits.

    Subclasses implement :meth:`send`. An exception from ``send`` becomes a
    failed record for that message only.
    """

    channel: Channel

    def __init__(
        self,
        *,
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        sub_batch_delay: float = 0.0,
    ) -> None:
        if sub_batch_size < 1:
            raise ValueError("sub_batch_size must be >= 1")
        if sub_batch_delay < 0:
            raise ValueError("sub_batch_delay must be >= 0")
        self.sub_batch_size = sub_batch_size
        self.sub_batch_delay = sub_batch_delay

    @abc.abstractmethod
    async def send(self, message: OutboundMessage) -> DeliveryRecord:
        raise NotImplementedError

    async def send_batch(self, messages: list[OutboundMessage]) -> list[DeliveryRecord]:
        records: list[DeliveryRecord] = []
        for index, chunk in enumerate(chunked(messages, self.sub_batch_size)):
            if index and self.sub_batch_delay:
                await asyncio.sleep(self.sub_batch_delay)
            records.extend(
                await asyncio.gather(*(self._send_safely(m) for m in chunk))
            )
        return records

    async def _send_safely(self, message: OutboundMessage) -> DeliveryRecord:
        try:
            return await self.send(message)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "%s send to %r failed: %s", self.channel.value, message.recipient, e
            )
            return DeliveryRecord.failed(
                message.recipient, self.channel, str(e) or type(e).__name__
            )

    async def health_check(self) -> AdapterHealth:
        return AdapterHealth(status="healthy")

    async def aclose(self) -> None:
        return None
