"""Channel routing: partition a batch by channel and dispatch each partition."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from .delivery import Channel, DeliveryOutcome, DeliveryRecord, OutboundMessage
from .exceptions import (
    ADAPTER_RESULT_MISMATCH,
    AdapterTimeoutError,
    ChannelNotImplementedError,
    ConfigurationError,
)

if TYPE_CHECKING:
    from .ports.adapter import IChannelAdapter
    from .preferences import UserNotificationPreference
    from .work_item import WorkItem

logger = logging.getLogger(__name__)


def partition(items: Iterable[WorkItem]) -> dict[Channel, list[WorkItem]]:
    """Group ``items`` by channel, keeping input order inside each group."""
    groups: dict[Channel, list[WorkItem]] = {}
    for item in items:
        groups.setdefault(item.channel, []).append(item)
    return groups


class ChannelRouter:
    """
    Registered-adapter map keyed by :class:`Channel`.

    ``dispatch`` never raises: unregistered channels, adapter exceptions and
    timeouts all come back as ``failed`` outcomes, one per input item.
    """

    def __init__(
        self,
        adapters: Mapping[Channel, IChannelAdapter] | None = None,
        timeout: float = 30.0,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self._adapters: dict[Channel, IChannelAdapter] = {}
        self._timeout = timeout
        for channel, adapter in (adapters or {}).items():
            self.register(adapter, channel)

    def register(self, adapter: IChannelAdapter, channel: Channel | None = None) -> None:
        target = channel or adapter.channel
        if not isinstance(target, Channel):
            raise ConfigurationError(f"Unknown channel {target!r}")
        if target in self._adapters:
            raise ConfigurationError(f"Adapter already registered for {target.value}")
        self._adapters[target] = adapter
        logger.debug("Registered %s adapter for %s", type(adapter).__name__, target.value)

    def adapter_for(self, channel: Channel) -> IChannelAdapter | None:
        return self._adapters.get(channel)

    @property
    def adapters(self) -> dict[Channel, IChannelAdapter]:
        return dict(self._adapters)

    @property
    def registered_channels(self) -> frozenset[Channel]:
        return frozenset(self._adapters)

    async def dispatch(
        self,
        channel: Channel,
        items: list[WorkItem],
        preferences: Mapping[str, UserNotificationPreference],
    ) -> list[DeliveryOutcome]:
        """Send one partition; the result is aligned 1:1 with ``items``."""
        if not items:
            return []

        adapter = self._adapters.get(channel)
        if adapter is None:
            error = ChannelNotImplementedError(channel)
            logger.warning(
                "No adapter registered for %s; failing %d items",
                channel.value,
                len(items),
            )
            return self._fail_all(items, str(error))

        messages = [self._to_message(item, preferences) for item in items]
        try:
            records = await asyncio.wait_for(
                adapter.send_batch(messages), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            error = AdapterTimeoutError(channel, self._timeout)
            logger.error(
                "%s adapter timed out after %.1fs for %d items",
                channel.value,
                self._timeout,
                len(items),
            )
            return self._fail_all(items, str(error))
        except Exception as e:  # noqa: BLE001
            logger.error(
                "%s adapter failed for %d items: %s",
                channel.value,
                len(items),
                e,
                exc_info=True,
            )
            return self._fail_all(items, str(e) or type(e).__name__)

        if len(records) != len(items):
            logger.error(
                "%s adapter returned %d results for %d messages",
                channel.value,
                len(records),
                len(items),
            )
            return self._fail_all(items, ADAPTER_RESULT_MISMATCH)

        return [
            self._to_outcome(item, record)
            for item, record in zip(items, records, strict=True)
        ]

    def _to_message(
        self,
        item: WorkItem,
        preferences: Mapping[str, UserNotificationPreference],
    ) -> OutboundMessage:
        preference = preferences.get(item.user_id)
        recipient = preference.recipient_for(item.channel) if preference else None
        return OutboundMessage(
            work_item_id=item.id,
            recipient=recipient or "",
            channel=item.channel,
            payload=dict(item.payload),
        )

    @staticmethod
    def _to_outcome(item: WorkItem, record: DeliveryRecord) -> DeliveryOutcome:
        if record.success:
            return DeliveryOutcome.sent(
                item.id, item.user_id, item.channel, delivery_id=record.provider_id
            )
        return DeliveryOutcome.failed(
            item.id,
            item.user_id,
            item.channel,
            error=record.error or "unknown delivery error",
        )

    @staticmethod
    def _fail_all(items: list[WorkItem], error: str) -> list[DeliveryOutcome]:
        return [
            DeliveryOutcome.failed(item.id, item.user_id, item.channel, error=error)
            for item in items
        ]
