"""Work items and producer-side enqueue requests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .delivery import Channel, WorkItemStatus

MIN_PRIORITY_SCORE = 0
MAX_PRIORITY_SCORE = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class WorkItem:
    """Snapshot of one pending unit of notification work.

    The store owns the mutable state (``status``, ``attempts``); the engine
    only ever sees a snapshot re-fetched at the start of each drain cycle.
    """

    user_id: str
    channel: Channel
    priority_score: int
    payload: dict[str, Any] = field(default_factory=dict)
    status: WorkItemStatus = WorkItemStatus.QUEUED
    scheduled_for: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)
    attempts: int = 0
    id: str = field(default_factory=_new_id)

    def __post_init__(self) -> None:
        if not MIN_PRIORITY_SCORE <= self.priority_score <= MAX_PRIORITY_SCORE:
            raise ValueError(
                f"priority_score must be within "
                f"[{MIN_PRIORITY_SCORE}, {MAX_PRIORITY_SCORE}], "
                f"got {self.priority_score}"
            )
        if self.scheduled_for.tzinfo is None:
            object.__setattr__(
                self, "scheduled_for", self.scheduled_for.replace(tzinfo=timezone.utc)
            )
        if self.created_at.tzinfo is None:
            object.__setattr__(
                self, "created_at", self.created_at.replace(tzinfo=timezone.utc)
            )

    def is_due(self, now: datetime) -> bool:
        return self.status is WorkItemStatus.QUEUED and self.scheduled_for <= now


@dataclass(frozen=True)
class NotificationRequest:
    """A producer's request to enqueue a notification.

    ``base_priority`` is scaled and boosted into a bounded score once, at
    enqueue time.
    """

    user_id: str
    channel: Channel
    payload: dict[str, Any] = field(default_factory=dict)
    base_priority: int = 5
    scheduled_for: datetime | None = None
    kind: str | None = None
