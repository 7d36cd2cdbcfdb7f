"""Tests for trigger schedules and the trigger scheduler."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from notification_engine.exceptions import ConfigurationError
from notification_engine.triggers import Trigger, TriggerScheduler


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_interval_trigger_next_run() -> None:
    trigger = Trigger.every("scan", AsyncMock(), seconds=300)
    assert trigger.next_run_after(utc(2024, 6, 3, 12, 0)) == utc(2024, 6, 3, 12, 5)


@pytest.mark.parametrize(
    ("now", "expected"),
    [
        # 21:00 in Tokyo, next 09:00 is tomorrow
        (utc(2024, 6, 3, 12, 0), utc(2024, 6, 4, 0, 0)),
        # exactly 09:00 in Tokyo, strictly after means tomorrow
        (utc(2024, 6, 3, 0, 0), utc(2024, 6, 4, 0, 0)),
        # 08:59 in Tokyo
        (utc(2024, 6, 2, 23, 59), utc(2024, 6, 3, 0, 0)),
    ],
)
def test_daily_trigger_uses_local_clock(now: datetime, expected: datetime) -> None:
    trigger = Trigger.daily_at("digest", AsyncMock(), at=time(9, 0), tz="Asia/Tokyo")
    assert trigger.next_run_after(now) == expected


def test_daily_trigger_crosses_dst() -> None:
    # 2024-03-10 is the US spring-forward day.
    trigger = Trigger.daily_at(
        "cleanup", AsyncMock(), at=time(2, 30), tz="America/New_York"
    )
    before = utc(2024, 3, 10, 12, 0)
    assert trigger.next_run_after(before) == utc(2024, 3, 11, 6, 30)


def test_trigger_needs_exactly_one_schedule() -> None:
    with pytest.raises(ValueError):
        Trigger(name="bad", action=AsyncMock())
    with pytest.raises(ValueError):
        Trigger(
            name="bad",
            action=AsyncMock(),
            interval=timedelta(seconds=1),
            at=time(1, 0),
        )
    with pytest.raises(ValueError):
        Trigger.every("bad", AsyncMock(), seconds=0)


def test_duplicate_trigger_names_are_rejected() -> None:
    scheduler = TriggerScheduler([Trigger.every("scan", AsyncMock(), seconds=1)])
    with pytest.raises(ConfigurationError):
        scheduler.add(Trigger.every("scan", AsyncMock(), seconds=2))


@pytest.mark.asyncio
async def test_same_trigger_never_overlaps() -> None:
    release = asyncio.Event()
    calls = 0

    async def slow() -> None:
        nonlocal calls
        calls += 1
        await release.wait()

    scheduler = TriggerScheduler([Trigger.every("slow", slow, seconds=60)])

    first = asyncio.create_task(scheduler.run_now("slow"))
    await asyncio.sleep(0)
    assert scheduler.is_running("slow")
    assert await scheduler.run_now("slow") is False
    release.set()

    assert await first is True
    assert calls == 1


@pytest.mark.asyncio
async def test_different_triggers_run_concurrently() -> None:
    release = asyncio.Event()
    started: list[str] = []

    def blocking(name: str):  # type: ignore[no-untyped-def]
        async def action() -> None:
            started.append(name)
            await release.wait()

        return action

    scheduler = TriggerScheduler(
        [
            Trigger.every("a", blocking("a"), seconds=60),
            Trigger.every("b", blocking("b"), seconds=60),
        ]
    )
    tasks = [
        asyncio.create_task(scheduler.run_now("a")),
        asyncio.create_task(scheduler.run_now("b")),
    ]
    await asyncio.sleep(0.01)
    assert sorted(started) == ["a", "b"]
    release.set()
    assert await asyncio.gather(*tasks) == [True, True]


@pytest.mark.asyncio
async def test_failing_action_is_logged_and_contained(
    caplog: pytest.LogCaptureFixture,
) -> None:
    action = AsyncMock(side_effect=RuntimeError("source offline"))
    now = utc(2024, 6, 3, 12, 0)
    scheduler = TriggerScheduler(
        [Trigger.every("scan", action, seconds=60)], clock=lambda: now
    )

    with caplog.at_level(logging.ERROR):
        assert await scheduler.run_now("scan") is True

    assert "Trigger 'scan' failed: source offline" in caplog.text
    assert scheduler.last_run("scan") == now


@pytest.mark.asyncio
async def test_scheduler_runs_interval_triggers_until_stopped() -> None:
    action = AsyncMock()
    scheduler = TriggerScheduler([Trigger.every("tick", action, seconds=0.01)])

    await scheduler.start()
    await asyncio.sleep(0.1)
    await scheduler.stop()
    calls = action.await_count
    await asyncio.sleep(0.05)

    assert calls >= 2
    assert action.await_count == calls


@pytest.mark.asyncio
async def test_run_on_start() -> None:
    action = AsyncMock()
    scheduler = TriggerScheduler(
        [Trigger("boot", action, interval=timedelta(hours=1), run_on_start=True)]
    )

    await scheduler.start()
    await asyncio.sleep(0.01)
    await scheduler.stop()

    action.assert_awaited_once()
