"""Shared fixtures for notification engine tests."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Any

import pytest

from notification_engine.adapters.memory import InMemoryChannelAdapter
from notification_engine.delivery import Channel
from notification_engine.preferences import ChannelContact, UserNotificationPreference
from notification_engine.stores.memory import InMemoryNotificationStore
from notification_engine.work_item import WorkItem

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_item(
    user_id: str = "u1",
    channel: Channel = Channel.EMAIL,
    score: int = 50,
    *,
    created_at: datetime | None = None,
    scheduled_for: datetime | None = None,
    payload: dict[str, Any] | None = None,
) -> WorkItem:
    created = created_at or NOW - timedelta(minutes=5)
    return WorkItem(
        user_id=user_id,
        channel=channel,
        priority_score=score,
        payload=payload or {},
        created_at=created,
        scheduled_for=scheduled_for or created,
    )


def make_preference(
    user_id: str = "u1",
    *,
    channels: tuple[Channel, ...] = tuple(Channel),
    quiet: tuple[time, time] | None = None,
    tz: str | None = None,
    max_per_day: int = 10,
    sent_today: int = 0,
    daily_digest: bool = False,
) -> UserNotificationPreference:
    contacts = {
        channel: ChannelContact(enabled=True, identifier=f"{user_id}@{channel.value}")
        for channel in channels
    }
    return UserNotificationPreference(
        user_id=user_id,
        contacts=contacts,
        quiet_hours_start=quiet[0] if quiet else None,
        quiet_hours_end=quiet[1] if quiet else None,
        timezone=tz,
        max_notifications_per_day=max_per_day,
        daily_sent_count=sent_today,
        daily_digest=daily_digest,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store(clock: FrozenClock) -> InMemoryNotificationStore:
    return InMemoryNotificationStore(clock=clock)


@pytest.fixture
def email_adapter() -> InMemoryChannelAdapter:
    return InMemoryChannelAdapter(Channel.EMAIL)


@pytest.fixture
def chat_adapter() -> InMemoryChannelAdapter:
    return InMemoryChannelAdapter(Channel.CHAT_PUSH)
