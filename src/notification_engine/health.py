"""Engine health: component probes, the drain heartbeat and the report."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .delivery import Channel
    from .ports.adapter import IChannelAdapter

logger = logging.getLogger(__name__)

UP = "up"
DOWN = "down"
HEALTHY = "healthy"
DEGRADED = "degraded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HealthReport:
    """Engine health as served by the operational endpoint."""

    status: str
    components: dict[str, str] = field(default_factory=dict)
    drain_state: str = "idle"
    last_cycle_ms: float | None = None
    timestamp: str = ""
    heartbeats: dict[str, str] = field(default_factory=dict)
    triggers: dict[str, str | None] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status == HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AdapterHealthCheck:
    """Health check backed by an adapter's ``health_check``."""

    def __init__(self, adapter: IChannelAdapter) -> None:
        self._adapter = adapter

    async def __call__(self) -> bool:
        report = await self._adapter.health_check()
        return report.healthy


class HealthRegistry:
    """Named component probes plus worker heartbeats for one engine.

    Probes run concurrently, each bounded by ``check_timeout``; a probe that
    raises, times out or returns something falsy marks its component down.
    A worker whose last heartbeat is older than ``heartbeat_timeout_seconds``
    is down as well.
    """

    def __init__(
        self,
        heartbeat_timeout_seconds: float = 60.0,
        check_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._checks: dict[str, Callable[[], Any]] = {}
        self._heartbeats: dict[str, datetime] = {}
        self._heartbeat_timeout = heartbeat_timeout_seconds
        self._check_timeout = check_timeout
        self._clock = clock

    @property
    def components(self) -> list[str]:
        return list(self._checks)

    def register(self, name: str, check: Callable[[], Any]) -> None:
        if name in self._checks:
            raise ConfigurationError(f"Health check {name!r} already registered")
        self._checks[name] = check

    def register_adapter(self, channel: Channel, adapter: IChannelAdapter) -> None:
        self.register(f"adapter:{channel.value}", AdapterHealthCheck(adapter))

    def heartbeat(self, worker_name: str) -> None:
        self._heartbeats[worker_name] = self._clock()

    async def _probe_one(self, name: str, check: Callable[[], Any]) -> str:
        try:
            value = check()
            if inspect.isawaitable(value):
                value = await asyncio.wait_for(value, timeout=self._check_timeout)
        except asyncio.TimeoutError:
            logger.warning("Health check %s timed out after %.1fs", name, self._check_timeout)
            return DOWN
        except Exception:  # noqa: BLE001
            logger.warning("Health check %s raised", name, exc_info=True)
            return DOWN
        return UP if value else DOWN

    async def probe(self) -> dict[str, str]:
        """Component name to ``up``/``down``, heartbeats included."""
        names = list(self._checks)
        results = await asyncio.gather(
            *(self._probe_one(name, self._checks[name]) for name in names)
        )
        components = dict(zip(names, results, strict=True))
        now = self._clock()
        for worker, beat in self._heartbeats.items():
            age = (now - beat).total_seconds()
            components[worker] = UP if age < self._heartbeat_timeout else DOWN
        return components

    async def report(
        self,
        *,
        drain_state: str = "idle",
        last_cycle_ms: float | None = None,
        triggers: dict[str, str | None] | None = None,
    ) -> HealthReport:
        components = await self.probe()
        return HealthReport(
            status=HEALTHY if all(v == UP for v in components.values()) else DEGRADED,
            components=components,
            drain_state=drain_state,
            last_cycle_ms=last_cycle_ms,
            timestamp=self._clock().isoformat(),
            heartbeats={name: ts.isoformat() for name, ts in self._heartbeats.items()},
            triggers=dict(triggers or {}),
        )
