"""Channel adapter port."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

from ..delivery import Channel, DeliveryRecord, OutboundMessage

HealthStatus = Literal["healthy", "unhealthy"]


@dataclass(frozen=True)
class AdapterHealth:
    status: HealthStatus
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


@runtime_checkable
class IChannelAdapter(Protocol):
    """
    Port implemented by each channel collaborator (email, chat push, SMS, ...).

    ``send_batch`` must return one record per input message, in input order.
    Adapters own any sub-batching and inter-batch delay their provider needs.
    """

    channel: Channel

    async def send(self, message: OutboundMessage) -> DeliveryRecord:
        """Deliver one message."""
        ...

    async def send_batch(self, messages: list[OutboundMessage]) -> list[DeliveryRecord]:
        """Deliver a partition; result aligned 1:1 with ``messages``."""
        ...

    async def health_check(self) -> AdapterHealth:
        """Report provider reachability."""
        ...
