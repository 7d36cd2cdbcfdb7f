"""Fetch, filter, route, dispatch and record, one drain cycle at a time."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from .delivery import DeliveryOutcome, WorkItemStatus
from .eligibility import DEFAULT_TIMEZONE, EligibilityVerdict, evaluate
from .exceptions import StoreUnavailableError
from .priority import order_batch
from .router import partition

if TYPE_CHECKING:
    from collections.abc import Callable

    from .delivery import Channel
    from .health import HealthRegistry
    from .metrics import EngineMetrics
    from .ports.store import INotificationStore
    from .preferences import UserNotificationPreference
    from .recorder import OutcomeRecorder
    from .router import ChannelRouter
    from .work_item import WorkItem

logger = logging.getLogger(__name__)

WORKER_NAME = "drain_loop"
NO_PREFERENCE = "no_preference"


class DrainState(Enum):
    IDLE = "idle"
    DRAINING = "draining"


@dataclass
class DrainCycleReport:
    """What one drain cycle did."""

    cycle: int
    fetched: int = 0
    skipped: int = 0
    sent: int = 0
    failed: int = 0
    already_resolved: int = 0
    record_errors: int = 0
    duration_seconds: float = 0.0
    skip_reasons: Counter[str] = field(default_factory=Counter)

    @property
    def dispatched(self) -> int:
        return self.sent + self.failed

    def as_log_entry(self) -> dict[str, object]:
        return {
            "cycle": self.cycle,
            "fetched": self.fetched,
            "skipped": self.skipped,
            "sent": self.sent,
            "failed": self.failed,
            "already_resolved": self.already_resolved,
            "record_errors": self.record_errors,
            "skip_reasons": dict(self.skip_reasons),
            "duration_ms": round(self.duration_seconds * 1000, 2),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DrainLoop:
    """Single-flight drain loop with a fixed polling interval.

    ``Idle -> Draining -> Idle``. Calling :meth:`run_cycle` while a cycle is
    in flight returns ``None`` without touching the store. :meth:`start`
    runs one cycle shortly after startup and then every ``interval``
    seconds; :meth:`trigger` wakes it early. :meth:`stop` lets an in-flight
    cycle finish recording before returning.

    Implements the ``start`` / ``stop`` background-worker lifecycle.
    """

    def __init__(
        self,
        store: INotificationStore,
        router: ChannelRouter,
        recorder: OutcomeRecorder,
        *,
        batch_size: int = 100,
        interval: float = 10.0,
        initial_delay: float = 1.0,
        default_timezone: str = DEFAULT_TIMEZONE,
        metrics: EngineMetrics | None = None,
        health: HealthRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._store = store
        self._router = router
        self._recorder = recorder
        self._batch_size = batch_size
        self._interval = interval
        self._initial_delay = max(0.0, initial_delay)
        self._default_timezone = default_timezone
        self._metrics = metrics
        self._health = health
        self._clock = clock

        self._state = DrainState.IDLE
        self._cycles = 0
        self._last_report: DrainCycleReport | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()

    @property
    def state(self) -> DrainState:
        return self._state

    @property
    def is_draining(self) -> bool:
        return self._state is DrainState.DRAINING

    @property
    def last_report(self) -> DrainCycleReport | None:
        return self._last_report

    # ── lifecycle ─────────────────────────────────────────────────────

    def trigger(self) -> None:
        """Wake the loop immediately."""
        self._wake.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=WORKER_NAME)
        logger.info(
            "DrainLoop started (interval=%.1fs, batch_size=%d)",
            self._interval,
            self._batch_size,
        )

    async def stop(self) -> None:
        """Stop polling; an in-flight cycle runs to completion first."""
        self._running = False
        self._wake.set()
        if self._task is not None:
            await asyncio.shield(self._task)
            self._task = None
        logger.info("DrainLoop stopped")

    async def _run_loop(self) -> None:
        delay = self._initial_delay
        while self._running:
            if delay > 0:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._wake.wait(), timeout=delay)
            self._wake.clear()
            if not self._running:
                break
            try:
                await self.run_cycle()
            except StoreUnavailableError as e:
                logger.warning("Drain cycle aborted, retrying next interval: %s", e)
            except Exception:
                logger.exception("DrainLoop error")
            delay = self._interval

    # ── one cycle ─────────────────────────────────────────────────────

    async def run_cycle(self) -> DrainCycleReport | None:
        """Run one drain cycle, or return None if one is already running.

        Raises:
            StoreUnavailableError: fetching work or preferences failed; the
                cycle was aborted before anything was dispatched.
        """
        if self._state is DrainState.DRAINING:
            logger.debug("Drain cycle already in flight; skipping")
            return None

        self._state = DrainState.DRAINING
        self._cycles += 1
        report = DrainCycleReport(cycle=self._cycles)
        start = time.monotonic()
        try:
            await self._drain(report)
        finally:
            report.duration_seconds = time.monotonic() - start
            self._state = DrainState.IDLE
            if self._metrics is not None:
                self._metrics.record_cycle(report.duration_seconds)
            if self._health is not None:
                self._health.heartbeat(WORKER_NAME)

        self._last_report = report
        if report.fetched:
            logger.info(json.dumps(report.as_log_entry()))
        return report

    async def _drain(self, report: DrainCycleReport) -> None:
        now = self._clock()
        try:
            fetched = await self._store.fetch_eligible(self._batch_size)
        except Exception as e:  # noqa: BLE001
            raise StoreUnavailableError(f"fetch_eligible failed: {e}") from e

        report.fetched = len(fetched)
        if not fetched:
            return

        batch = order_batch(item for item in fetched if item.is_due(now))
        if len(batch) < len(fetched):
            report.skip_reasons["not_due"] = len(fetched) - len(batch)
        preferences = await self._load_preferences(batch)

        # Sends left under each user's cap for this cycle only; the stored
        # counter is still incremented by the recorder.
        budgets = {
            user_id: preference.max_notifications_per_day - preference.daily_sent_count
            for user_id, preference in preferences.items()
        }
        survivors: list[WorkItem] = []
        for item in batch:
            preference = preferences.get(item.user_id)
            if preference is None:
                report.skip_reasons[NO_PREFERENCE] += 1
                continue
            verdict = evaluate(item, preference, now, self._default_timezone)
            if verdict is EligibilityVerdict.ELIGIBLE and budgets[item.user_id] <= 0:
                verdict = EligibilityVerdict.DAILY_CAP_REACHED
            if verdict is not EligibilityVerdict.ELIGIBLE:
                report.skip_reasons[verdict.value] += 1
                continue
            budgets[item.user_id] -= 1
            survivors.append(item)
        report.skipped = len(fetched) - len(survivors)

        for channel, items in partition(survivors).items():
            outcomes = await self._dispatch_partition(channel, items, preferences)
            summary = await self._recorder.record(outcomes)
            report.sent += sum(1 for o in outcomes if o.status is WorkItemStatus.SENT)
            report.failed += sum(
                1 for o in outcomes if o.status is WorkItemStatus.FAILED
            )
            report.already_resolved += summary.already_resolved
            report.record_errors += summary.errors

    async def _dispatch_partition(
        self,
        channel: Channel,
        items: list[WorkItem],
        preferences: dict[str, UserNotificationPreference],
    ) -> list[DeliveryOutcome]:
        try:
            return await self._router.dispatch(channel, items, preferences)
        except Exception as e:  # noqa: BLE001
            logger.exception("Dispatch of %s partition failed", channel.value)
            error = str(e) or type(e).__name__
            return [
                DeliveryOutcome.failed(item.id, item.user_id, item.channel, error=error)
                for item in items
            ]

    async def _load_preferences(
        self, items: list[WorkItem]
    ) -> dict[str, UserNotificationPreference]:
        preferences: dict[str, UserNotificationPreference] = {}
        for user_id in dict.fromkeys(item.user_id for item in items):
            try:
                preference = await self._store.fetch_preference(user_id)
            except Exception as e:  # noqa: BLE001
                raise StoreUnavailableError(
                    f"fetch_preference failed for {user_id}: {e}"
                ) from e
            if preference is not None:
                preferences[user_id] = preference
        return preferences
