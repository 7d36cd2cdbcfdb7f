"""Tests for the eligibility filter."""

from __future__ import annotations

from datetime import datetime, time, timezone

import pytest
from conftest import make_item, make_preference

from notification_engine.delivery import Channel
from notification_engine.eligibility import (
    EligibilityVerdict,
    evaluate,
    in_window,
    is_eligible,
    is_in_quiet_hours,
    resolve_timezone,
)
from notification_engine.preferences import ChannelContact, UserNotificationPreference


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 6, 3, hour, minute, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("window", "now", "expected"),
    [
        ((time(22, 0), time(8, 0)), at(23), True),
        ((time(22, 0), time(8, 0)), at(3), True),
        ((time(22, 0), time(8, 0)), at(12), False),
        ((time(22, 0), time(8, 0)), at(22, 0), True),
        ((time(22, 0), time(8, 0)), at(8, 0), False),
        ((time(9, 0), time(17, 0)), at(10), True),
        ((time(9, 0), time(17, 0)), at(20), False),
        ((time(9, 0), time(17, 0)), at(17, 0), False),
        ((time(9, 0), time(9, 0)), at(9, 0), False),
    ],
)
def test_quiet_hours_window(
    window: tuple[time, time], now: datetime, expected: bool
) -> None:
    preference = make_preference(quiet=window, tz="UTC")
    assert is_in_quiet_hours(preference, now) is expected


def test_in_window_ignores_seconds() -> None:
    assert in_window(time(7, 59, 59), time(22, 0), time(8, 0)) is True
    assert in_window(time(8, 0, 30), time(22, 0), time(8, 0)) is False


def test_quiet_hours_use_the_users_timezone() -> None:
    # 14:00 UTC is 23:00 in Tokyo.
    preference = make_preference(quiet=(time(22, 0), time(8, 0)), tz="Asia/Tokyo")
    assert is_in_quiet_hours(preference, at(14)) is True
    assert is_in_quiet_hours(preference, at(3)) is False


def test_unknown_timezone_falls_back_to_default() -> None:
    preference = make_preference(quiet=(time(22, 0), time(8, 0)), tz="Mars/Olympus")
    assert is_in_quiet_hours(preference, at(23), default_timezone="UTC") is True
    # 23:00 UTC is 08:00 in Tokyo, just outside the window.
    assert is_in_quiet_hours(preference, at(23), default_timezone="Asia/Tokyo") is False


def test_resolve_timezone_falls_back_to_utc() -> None:
    assert resolve_timezone("Nowhere/Special", "Also/Invalid") == timezone.utc
    assert str(resolve_timezone(None, "Europe/Paris")) == "Europe/Paris"


def test_no_quiet_hours_configured() -> None:
    assert is_in_quiet_hours(make_preference(), at(3)) is False


def test_channel_not_configured() -> None:
    preference = make_preference(channels=(Channel.EMAIL,))
    item = make_item(channel=Channel.SMS)
    assert evaluate(item, preference, at(12)) is EligibilityVerdict.CHANNEL_NOT_CONFIGURED


def test_enabled_channel_without_identifier_is_not_configured() -> None:
    preference = UserNotificationPreference(
        user_id="u1",
        contacts={Channel.EMAIL: ChannelContact(enabled=True, identifier="  ")},
    )
    assert is_eligible(make_item(), preference, at(12)) is False


def test_disabled_channel_is_not_configured() -> None:
    preference = UserNotificationPreference(
        user_id="u1",
        contacts={Channel.EMAIL: ChannelContact(enabled=False, identifier="a@b.c")},
    )
    assert evaluate(make_item(), preference, at(12)) is (
        EligibilityVerdict.CHANNEL_NOT_CONFIGURED
    )


@pytest.mark.parametrize(
    ("sent", "cap", "expected"),
    [(9, 10, True), (10, 10, False), (11, 10, False), (0, 0, False)],
)
def test_daily_cap(sent: int, cap: int, expected: bool) -> None:
    preference = make_preference(sent_today=sent, max_per_day=cap)
    assert is_eligible(make_item(), preference, at(12)) is expected


def test_verdict_reports_quiet_hours_before_cap() -> None:
    preference = make_preference(
        quiet=(time(22, 0), time(8, 0)), tz="UTC", sent_today=10, max_per_day=10
    )
    assert evaluate(make_item(), preference, at(23)) is EligibilityVerdict.QUIET_HOURS


def test_eligible_item() -> None:
    preference = make_preference(quiet=(time(22, 0), time(8, 0)), tz="UTC")
    assert evaluate(make_item(), preference, at(12)) is EligibilityVerdict.ELIGIBLE
