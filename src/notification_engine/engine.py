"""NotificationEngine: composition root wiring store, adapters and workers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .config import EngineSettings
from .drain import DrainLoop
from .exceptions import ConfigurationError
from .health import HealthRegistry, HealthReport
from .metrics import EngineMetrics
from .producers import (
    DailyDigestProducer,
    MetricsSnapshotPublisher,
    RetentionCleanup,
    SourceConditionScan,
)
from .recorder import OutcomeRecorder
from .retry import RetryPolicy, connect_with_retry
from .router import ChannelRouter
from .service import NotificationService
from .triggers import Trigger, TriggerScheduler
from .work_item import NotificationRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .delivery import Channel
    from .drain import DrainCycleReport
    from .ports.adapter import IChannelAdapter
    from .ports.producers import IAlertSource, IMetricsSink
    from .ports.store import INotificationStore

logger = logging.getLogger(__name__)

SOURCE_SCAN = "source_scan"
DAILY_DIGEST = "daily_digest"
RETENTION_CLEANUP = "retention_cleanup"
METRICS_SNAPSHOT = "metrics_snapshot"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationEngine:
    """
    Owns one drain loop, one trigger scheduler and the collaborators they
    share. Build as many as you like; nothing here is process-global.

    Usage::

        engine = NotificationEngine(store, [email_adapter, chat_adapter])
        async with engine:
            await engine.queue_notification("u1", Channel.EMAIL, {...})
    """

    def __init__(
        self,
        store: INotificationStore,
        adapters: Mapping[Channel, IChannelAdapter] | Iterable[IChannelAdapter] = (),
        settings: EngineSettings | None = None,
        *,
        alert_source: IAlertSource | None = None,
        metrics_sink: IMetricsSink | None = None,
        metrics: EngineMetrics | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.store = store
        self.metrics = metrics or EngineMetrics()
        self.alert_source = alert_source
        self.metrics_sink = metrics_sink
        self._clock = clock
        self._started = False

        self.router = ChannelRouter(timeout=self.settings.adapter_timeout_seconds)
        if isinstance(adapters, Mapping):
            for channel, adapter in adapters.items():
                self.router.register(adapter, channel)
        else:
            for adapter in adapters:
                self.router.register(adapter)

        self.health_registry = HealthRegistry(
            heartbeat_timeout_seconds=max(60.0, self.settings.drain_interval_seconds * 3),
            clock=clock,
        )
        self.health_registry.register("store", store.ping)
        for channel, adapter in self.router.adapters.items():
            self.health_registry.register_adapter(channel, adapter)
        sink_ping = getattr(metrics_sink, "ping", None)
        if sink_ping is not None:
            self.health_registry.register("metrics_sink", sink_ping)

        self.recorder = OutcomeRecorder(store, self.metrics)
        self.drain = DrainLoop(
            store,
            self.router,
            self.recorder,
            batch_size=self.settings.drain_batch_size,
            interval=self.settings.drain_interval_seconds,
            initial_delay=self.settings.drain_initial_delay_seconds,
            default_timezone=self.settings.default_timezone,
            metrics=self.metrics,
            health=self.health_registry,
            clock=clock,
        )
        self.service = NotificationService(store, clock)
        self.scheduler = TriggerScheduler(self._build_triggers(), clock)

    def _build_triggers(self) -> list[Trigger]:
        s = self.settings
        triggers = [
            Trigger.daily_at(
                DAILY_DIGEST,
                DailyDigestProducer(
                    self.store,
                    self.service,
                    tz=s.digest_timezone,
                    base_priority=s.digest_base_priority,
                    clock=self._clock,
                ),
                at=s.digest_local_time,
                tz=s.digest_timezone,
            ),
            Trigger.daily_at(
                RETENTION_CLEANUP,
                RetentionCleanup(self.store, s.retention_days, clock=self._clock),
                at=s.cleanup_local_time,
                tz=s.digest_timezone,
            ),
        ]
        if self.alert_source is not None:
            triggers.append(
                Trigger.every(
                    SOURCE_SCAN,
                    SourceConditionScan(self.alert_source, self.service),
                    seconds=s.source_scan_interval_seconds,
                )
            )
        if self.metrics_sink is not None:
            triggers.append(
                Trigger.every(
                    METRICS_SNAPSHOT,
                    MetricsSnapshotPublisher(self.metrics, self.metrics_sink),
                    seconds=s.metrics_snapshot_interval_seconds,
                )
            )
        return triggers

    # ── lifecycle ─────────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Verify configuration, connect to the store, start the workers.

        Raises:
            ConfigurationError: a required channel has no adapter, or the
                store stayed unreachable through every connection attempt.
        """
        if self._started:
            return

        missing = [
            channel.value
            for channel in self.settings.required_channels
            if channel not in self.router.registered_channels
        ]
        if missing:
            raise ConfigurationError(
                f"No adapter registered for required channels: {', '.join(missing)}"
            )

        policy = RetryPolicy.from_settings(self.settings)
        try:
            await connect_with_retry(
                self.store.ping, policy, description="notification store"
            )
        except Exception as e:
            raise ConfigurationError(f"Notification store unreachable: {e}") from e

        await self.drain.start()
        await self.scheduler.start()
        self._started = True
        logger.info(
            "NotificationEngine started (channels=%s)",
            sorted(c.value for c in self.router.registered_channels),
        )

    async def stop(self) -> None:
        """Stop triggers, let the current drain cycle finish, close resources."""
        if not self._started:
            return
        await self.scheduler.stop()
        await self.drain.stop()
        for resource in (*self.router.adapters.values(), self.metrics_sink, self.store):
            aclose = getattr(resource, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception:  # noqa: BLE001
                logger.warning("Failed to close %s", type(resource).__name__, exc_info=True)
        self._started = False
        logger.info("NotificationEngine stopped")

    async def __aenter__(self) -> NotificationEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    # ── operations ────────────────────────────────────────────────────

    async def queue_notification(
        self,
        user_id: str,
        channel: Channel,
        payload: dict[str, Any] | None = None,
        *,
        base_priority: int = 5,
        scheduled_for: datetime | None = None,
        kind: str | None = None,
    ) -> str:
        """Enqueue a notification and return its work item id."""
        return await self.service.queue_notification(
            NotificationRequest(
                user_id=user_id,
                channel=channel,
                payload=dict(payload or {}),
                base_priority=base_priority,
                scheduled_for=scheduled_for,
                kind=kind,
            )
        )

    async def run_cycle(self) -> DrainCycleReport | None:
        return await self.drain.run_cycle()

    def trigger_drain(self) -> None:
        self.drain.trigger()

    async def health(self) -> HealthReport:
        """Aggregate component health; never raises."""
        report = self.drain.last_report
        return await self.health_registry.report(
            drain_state=self.drain.state.value,
            last_cycle_ms=(
                round(report.duration_seconds * 1000, 2) if report is not None else None
            ),
            triggers=self._trigger_runs(),
        )

    def _trigger_runs(self) -> dict[str, str | None]:
        runs: dict[str, str | None] = {}
        for name in self.scheduler.triggers:
            last = self.scheduler.last_run(name)
            runs[name] = last.isoformat() if last is not None else None
        return runs

    def metrics_snapshot(self) -> dict[str, Any]:
        snapshot = self.metrics.snapshot()
        snapshot["drain_state"] = self.drain.state.value
        return snapshot
