"""Adapter that logs messages instead of delivering them."""

from __future__ import annotations

import json
import logging

from ..delivery import Channel, DeliveryRecord, OutboundMessage
from .batching import BatchingChannelAdapter

logger = logging.getLogger(__name__)


class ConsoleChannelAdapter(BatchingChannelAdapter):
    """Development adapter: every send succeeds and is logged at INFO."""

    def __init__(self, channel: Channel, *, sub_batch_size: int = 100) -> None:
        super().__init__(sub_batch_size=sub_batch_size)
        self.channel = channel

    async def send(self, message: OutboundMessage) -> DeliveryRecord:
        logger.info(
            "[%s] to=%s item=%s payload=%s",
            self.channel.value,
            message.recipient,
            message.work_item_id,
            json.dumps(message.payload, default=str),
        )
        return DeliveryRecord.sent(
            message.recipient, self.channel, provider_id=f"console-{message.work_item_id}"
        )
