"""Periodic trigger set: named, independently scheduled producer tasks.

A :class:`Trigger` is either interval-based or fires once a day at a fixed
local clock time in a given timezone. :class:`TriggerScheduler` runs each
trigger in its own task; a trigger never overlaps with itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any

from .eligibility import resolve_timezone
from .exceptions import ConfigurationError, TriggerError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Trigger:
    """Schedule descriptor for one producer action."""

    name: str
    action: Callable[[], Awaitable[Any]]
    interval: timedelta | None = None
    at: time | None = None
    timezone: str = "UTC"
    run_on_start: bool = False

    def __post_init__(self) -> None:
        if (self.interval is None) == (self.at is None):
            raise ValueError(
                f"Trigger {self.name!r} needs exactly one of interval or at"
            )
        if self.interval is not None and self.interval <= timedelta(0):
            raise ValueError(f"Trigger {self.name!r} interval must be positive")

    @classmethod
    def every(
        cls,
        name: str,
        action: Callable[[], Awaitable[Any]],
        *,
        seconds: float,
        run_on_start: bool = False,
    ) -> Trigger:
        return cls(
            name=name,
            action=action,
            interval=timedelta(seconds=seconds),
            run_on_start=run_on_start,
        )

    @classmethod
    def daily_at(
        cls,
        name: str,
        action: Callable[[], Awaitable[Any]],
        *,
        at: time,
        tz: str = "UTC",
    ) -> Trigger:
        return cls(name=name, action=action, at=at, timezone=tz)

    def next_run_after(self, now: datetime) -> datetime:
        """First fire time strictly after ``now`` (UTC)."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if self.interval is not None:
            return now + self.interval

        assert self.at is not None
        zone = resolve_timezone(self.timezone)
        local_now = now.astimezone(zone)
        candidate = datetime.combine(local_now.date(), self.at, tzinfo=zone)
        if candidate <= local_now:
            candidate = datetime.combine(
                local_now.date() + timedelta(days=1), self.at, tzinfo=zone
            )
        return candidate.astimezone(timezone.utc)


class TriggerScheduler:
    """Generic scheduler loop for a set of :class:`Trigger` descriptors.

    Implements the ``start`` / ``stop`` background-worker lifecycle. Stopping
    waits for in-flight actions to finish.
    """

    def __init__(
        self,
        triggers: Iterable[Trigger] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._triggers: dict[str, Trigger] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_run: dict[str, datetime] = {}
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._stopping: asyncio.Event | None = None
        for trigger in triggers:
            self.add(trigger)

    def add(self, trigger: Trigger) -> None:
        if trigger.name in self._triggers:
            raise ConfigurationError(f"Duplicate trigger name {trigger.name!r}")
        self._triggers[trigger.name] = trigger
        self._locks[trigger.name] = asyncio.Lock()

    @property
    def triggers(self) -> dict[str, Trigger]:
        return dict(self._triggers)

    def last_run(self, name: str) -> datetime | None:
        return self._last_run.get(name)

    def is_running(self, name: str) -> bool:
        return self._locks[name].locked()

    async def run_now(self, name: str) -> bool:
        """Run a trigger's action immediately.

        Returns False without running when that trigger is already in
        flight.
        """
        trigger = self._triggers[name]
        lock = self._locks[name]
        if lock.locked():
            logger.debug("Trigger %s already running; skipping", name)
            return False
        async with lock:
            await self._execute(trigger)
        return True

    async def _execute(self, trigger: Trigger) -> None:
        try:
            result = await trigger.action()
        except Exception as e:  # noqa: BLE001
            error = TriggerError(trigger.name, str(e) or type(e).__name__)
            logger.error("%s", error, exc_info=True)
        else:
            logger.debug("Trigger %s completed: %r", trigger.name, result)
        finally:
            self._last_run[trigger.name] = self._clock()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stopping = asyncio.Event()
        for trigger in self._triggers.values():
            self._tasks.append(
                asyncio.create_task(
                    self._run_trigger(trigger), name=f"trigger:{trigger.name}"
                )
            )
        logger.info("TriggerScheduler started (%d triggers)", len(self._triggers))

    async def stop(self) -> None:
        self._running = False
        if self._stopping is not None:
            self._stopping.set()
        if self._tasks:
            await asyncio.shield(asyncio.gather(*self._tasks, return_exceptions=True))
        self._tasks.clear()
        logger.info("TriggerScheduler stopped")

    async def _run_trigger(self, trigger: Trigger) -> None:
        assert self._stopping is not None
        if trigger.run_on_start:
            await self.run_now(trigger.name)
        while self._running:
            now = self._clock()
            delay = (trigger.next_run_after(now) - now).total_seconds()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=max(delay, 0))
            if not self._running:
                break
            await self.run_now(trigger.name)
