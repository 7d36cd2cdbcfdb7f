"""Tests for the drain loop."""

from __future__ import annotations

import asyncio
from datetime import time, timedelta

import pytest
from conftest import FrozenClock, make_item, make_preference

from notification_engine.adapters.memory import InMemoryChannelAdapter
from notification_engine.delivery import Channel, WorkItemStatus
from notification_engine.drain import DrainLoop, DrainState
from notification_engine.exceptions import StoreUnavailableError
from notification_engine.health import HealthRegistry
from notification_engine.metrics import EngineMetrics
from notification_engine.recorder import OutcomeRecorder
from notification_engine.router import ChannelRouter
from notification_engine.stores.memory import InMemoryNotificationStore


def build_loop(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    *adapters: InMemoryChannelAdapter,
    **kwargs: object,
) -> DrainLoop:
    metrics = EngineMetrics()
    return DrainLoop(
        store,
        ChannelRouter({a.channel: a for a in adapters}),
        OutcomeRecorder(store, metrics),
        metrics=metrics,
        clock=clock,
        **kwargs,  # type: ignore[arg-type]
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:  # type: ignore[no-untyped-def]
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_cycle_routes_each_channel_independently(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    for uid in ("u1", "u2", "u3"):
        store.add_preference(make_preference(uid))
    sms = [make_item(uid, Channel.SMS) for uid in ("u1", "u2", "u3")]
    email = make_item("u1", Channel.EMAIL)
    for item in (*sms, email):
        await store.enqueue(item)

    report = await build_loop(store, clock, email_adapter).run_cycle()

    assert report is not None
    assert (report.fetched, report.sent, report.failed, report.skipped) == (4, 1, 3, 0)
    email_adapter.assert_sent(email.id)
    for item in sms:
        assert store.get(item.id).status is WorkItemStatus.FAILED  # type: ignore[union-attr]
        assert store.error_for(item.id) == "channel-not-implemented"


@pytest.mark.asyncio
async def test_resolved_items_are_never_dispatched_again(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.add_preference(make_preference("u1"))
    item = make_item("u1")
    await store.enqueue(item)
    loop = build_loop(store, clock, email_adapter)

    await loop.run_cycle()
    second = await loop.run_cycle()

    assert second is not None and second.fetched == 0
    assert email_adapter.batch_calls == 1
    assert store.get(item.id).attempts == 1  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_ineligible_items_stay_queued(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    # clock is 12:00 UTC
    store.add_preference(make_preference("quiet", quiet=(time(11, 0), time(13, 0))))
    store.add_preference(make_preference("capped", sent_today=10, max_per_day=10))
    store.add_preference(make_preference("sms-only", channels=(Channel.SMS,)))
    items = [
        make_item("quiet"),
        make_item("capped"),
        make_item("sms-only"),
        make_item("nobody"),
    ]
    for item in items:
        await store.enqueue(item)

    report = await build_loop(store, clock, email_adapter).run_cycle()

    assert report is not None
    assert report.skipped == 4
    assert report.dispatched == 0
    assert dict(report.skip_reasons) == {
        "quiet_hours": 1,
        "daily_cap_reached": 1,
        "channel_not_configured": 1,
        "no_preference": 1,
    }
    assert email_adapter.batch_calls == 0
    assert all(store.get(i.id).status is WorkItemStatus.QUEUED for i in items)  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_daily_cap_holds_within_one_cycle(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.add_preference(make_preference("u1", max_per_day=2, sent_today=1))
    store.add_preference(make_preference("u2", max_per_day=3))
    top = make_item("u1", score=150)
    rest = [make_item("u1", score=50) for _ in range(4)]
    others = [make_item("u2") for _ in range(2)]
    for item in (top, *rest, *others):
        await store.enqueue(item)

    report = await build_loop(store, clock, email_adapter).run_cycle()

    assert report is not None
    assert report.sent == 3
    assert report.skip_reasons["daily_cap_reached"] == 4
    assert store.daily_count("u1") == 2
    assert store.daily_count("u2") == 2
    email_adapter.assert_sent(top.id)
    assert all(store.get(i.id).status is WorkItemStatus.QUEUED for i in rest)  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_dispatch_follows_priority_order(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.add_preference(make_preference("u1"))
    low = make_item("u1", score=10)
    high = make_item("u1", score=150)
    mid_old = make_item("u1", score=80, created_at=clock.now - timedelta(hours=1))
    mid_new = make_item("u1", score=80, created_at=clock.now - timedelta(minutes=1))
    for item in (low, mid_new, high, mid_old):
        await store.enqueue(item)

    await build_loop(store, clock, email_adapter).run_cycle()

    assert email_adapter.sent_ids() == [high.id, mid_old.id, mid_new.id, low.id]


@pytest.mark.asyncio
async def test_batch_size_bounds_the_fetch(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.add_preference(make_preference("u1"))
    for _ in range(5):
        await store.enqueue(make_item("u1"))

    report = await build_loop(store, clock, email_adapter, batch_size=2).run_cycle()

    assert report is not None and report.fetched == 2
    assert len(email_adapter.sent) == 2


@pytest.mark.asyncio
async def test_overlapping_cycle_is_a_no_op(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
) -> None:
    adapter = InMemoryChannelAdapter(Channel.EMAIL, delay=0.1)
    store.add_preference(make_preference("u1"))
    await store.enqueue(make_item("u1"))
    loop = build_loop(store, clock, adapter)

    first, second = await asyncio.gather(loop.run_cycle(), loop.run_cycle())

    assert first is not None
    assert second is None
    assert store.fetch_calls == 1
    assert adapter.batch_calls == 1
    assert loop.state is DrainState.IDLE


@pytest.mark.asyncio
async def test_fetch_failure_aborts_cycle(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.fetch_error = ConnectionError("db gone")
    loop = build_loop(store, clock, email_adapter)

    with pytest.raises(StoreUnavailableError, match="db gone"):
        await loop.run_cycle()

    assert loop.state is DrainState.IDLE
    assert email_adapter.batch_calls == 0


@pytest.mark.asyncio
async def test_preference_failure_aborts_cycle(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    item = make_item("u1")
    await store.enqueue(item)
    store.preference_error = TimeoutError("slow")

    with pytest.raises(StoreUnavailableError):
        await build_loop(store, clock, email_adapter).run_cycle()

    assert store.get(item.id).status is WorkItemStatus.QUEUED  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_failing_partition_does_not_affect_others(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
) -> None:
    broken = InMemoryChannelAdapter(Channel.EMAIL, batch_error=RuntimeError("boom"))
    chat = InMemoryChannelAdapter(Channel.CHAT_PUSH)
    store.add_preference(make_preference("u1"))
    email_item = make_item("u1", Channel.EMAIL)
    chat_item = make_item("u1", Channel.CHAT_PUSH)
    await store.enqueue(email_item)
    await store.enqueue(chat_item)

    report = await build_loop(store, clock, broken, chat).run_cycle()

    assert report is not None and (report.sent, report.failed) == (1, 1)
    assert store.error_for(email_item.id) == "boom"
    assert store.get(chat_item.id).status is WorkItemStatus.SENT  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_router_crash_fails_only_that_partition(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
    chat_adapter: InMemoryChannelAdapter,
) -> None:
    class FlakyRouter(ChannelRouter):
        async def dispatch(self, channel, items, preferences):  # type: ignore[no-untyped-def]
            if channel is Channel.EMAIL:
                raise RuntimeError("router exploded")
            return await super().dispatch(channel, items, preferences)

    store.add_preference(make_preference("u1"))
    email_item = make_item("u1", Channel.EMAIL)
    chat_item = make_item("u1", Channel.CHAT_PUSH)
    await store.enqueue(email_item)
    await store.enqueue(chat_item)
    router = FlakyRouter({Channel.EMAIL: email_adapter, Channel.CHAT_PUSH: chat_adapter})
    loop = DrainLoop(store, router, OutcomeRecorder(store), clock=clock)

    await loop.run_cycle()

    assert store.error_for(email_item.id) == "router exploded"
    chat_adapter.assert_sent(chat_item.id)


@pytest.mark.asyncio
async def test_cycle_updates_metrics_and_heartbeat(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    health = HealthRegistry()
    metrics = EngineMetrics()
    loop = DrainLoop(
        store,
        ChannelRouter({Channel.EMAIL: email_adapter}),
        OutcomeRecorder(store, metrics),
        metrics=metrics,
        health=health,
        clock=clock,
    )

    await loop.run_cycle()

    assert metrics.cycles == 1
    assert (await health.probe())["drain_loop"] == "up"
    assert loop.last_report is not None and loop.last_report.cycle == 1


@pytest.mark.asyncio
async def test_background_loop_drains_and_stops(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.add_preference(make_preference("u1"))
    item = make_item("u1")
    await store.enqueue(item)
    loop = build_loop(store, clock, email_adapter, interval=0.01, initial_delay=0)

    await loop.start()
    await wait_until(lambda: email_adapter.sent_ids() == [item.id])
    await loop.stop()

    assert loop.state is DrainState.IDLE
    assert store.get(item.id).status is WorkItemStatus.SENT  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_stop_lets_in_flight_cycle_finish(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
) -> None:
    adapter = InMemoryChannelAdapter(Channel.EMAIL, delay=0.1)
    store.add_preference(make_preference("u1"))
    item = make_item("u1")
    await store.enqueue(item)
    loop = build_loop(store, clock, adapter, interval=60, initial_delay=0)

    await loop.start()
    await wait_until(lambda: loop.is_draining)
    await loop.stop()

    assert store.get(item.id).status is WorkItemStatus.SENT  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_trigger_wakes_the_loop_early(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.add_preference(make_preference("u1"))
    loop = build_loop(store, clock, email_adapter, interval=60, initial_delay=60)
    await loop.start()
    try:
        await store.enqueue(make_item("u1"))
        loop.trigger()
        await wait_until(lambda: len(email_adapter.sent) == 1)
    finally:
        await loop.stop()


@pytest.mark.asyncio
async def test_loop_survives_store_outage(
    store: InMemoryNotificationStore,
    clock: FrozenClock,
    email_adapter: InMemoryChannelAdapter,
) -> None:
    store.add_preference(make_preference("u1"))
    store.fetch_error = ConnectionError("db gone")
    loop = build_loop(store, clock, email_adapter, interval=0.01, initial_delay=0)

    await loop.start()
    try:
        await wait_until(lambda: store.fetch_calls >= 2)
        store.fetch_error = None
        await store.enqueue(make_item("u1"))
        await wait_until(lambda: len(email_adapter.sent) == 1)
    finally:
        await loop.stop()
