"""Channel enum, delivery results and audit records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Channel(Enum):
    """Closed set of delivery channels."""

    EMAIL = "email"
    CHAT_PUSH = "chat_push"
    SMS = "sms"
    MOBILE_PUSH = "mobile_push"


class WorkItemStatus(Enum):
    """Work item lifecycle. ``SENT`` and ``FAILED`` are terminal."""

    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not WorkItemStatus.QUEUED


@dataclass(frozen=True)
class OutboundMessage:
    """What a channel adapter is asked to deliver."""

    work_item_id: str
    recipient: str
    channel: Channel
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryRecord:
    """Raw adapter result for one message."""

    recipient: str
    channel: Channel
    success: bool
    provider_id: str | None = None
    error: str | None = None

    @classmethod
    def sent(
        cls,
        recipient: str,
        channel: Channel,
        provider_id: str | None = None,
    ) -> DeliveryRecord:
        """Create a successful delivery record."""
        return cls(
            recipient=recipient,
            channel=channel,
            success=True,
            provider_id=provider_id,
        )

    @classmethod
    def failed(
        cls,
        recipient: str,
        channel: Channel,
        error: str | None = None,
    ) -> DeliveryRecord:
        """Create a failed delivery record."""
        return cls(
            recipient=recipient,
            channel=channel,
            success=False,
            error=error or "unknown delivery error",
        )


@dataclass(frozen=True)
class DeliveryOutcome:
    """Per-work-item result of one drain attempt."""

    work_item_id: str
    user_id: str
    channel: Channel
    status: WorkItemStatus
    delivery_id: str | None = None
    error: str | None = None
    resolved_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def succeeded(self) -> bool:
        return self.status is WorkItemStatus.SENT

    @classmethod
    def sent(
        cls,
        work_item_id: str,
        user_id: str,
        channel: Channel,
        delivery_id: str | None = None,
    ) -> DeliveryOutcome:
        return cls(
            work_item_id=work_item_id,
            user_id=user_id,
            channel=channel,
            status=WorkItemStatus.SENT,
            delivery_id=delivery_id,
        )

    @classmethod
    def failed(
        cls,
        work_item_id: str,
        user_id: str,
        channel: Channel,
        error: str,
    ) -> DeliveryOutcome:
        return cls(
            work_item_id=work_item_id,
            user_id=user_id,
            channel=channel,
            status=WorkItemStatus.FAILED,
            error=error,
        )


@dataclass(frozen=True)
class HistoryRecord:
    """Append-only audit row, written once per resolved attempt."""

    work_item_id: str
    user_id: str
    channel: Channel
    status: WorkItemStatus
    sent_at: datetime | None = None
    error_message: str | None = None

    @classmethod
    def from_outcome(cls, outcome: DeliveryOutcome) -> HistoryRecord:
        return cls(
            work_item_id=outcome.work_item_id,
            user_id=outcome.user_id,
            channel=outcome.channel,
            status=outcome.status,
            sent_at=outcome.resolved_at if outcome.succeeded else None,
            error_message=outcome.error,
        )
