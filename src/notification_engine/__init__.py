"""Priority-based, multi-channel notification delivery engine."""

from __future__ import annotations

from .config import EngineSettings, setup_logging
from .delivery import (
    Channel,
    DeliveryOutcome,
    DeliveryRecord,
    HistoryRecord,
    OutboundMessage,
    WorkItemStatus,
)
from .drain import DrainCycleReport, DrainLoop, DrainState
from .eligibility import EligibilityVerdict, is_eligible
from .engine import NotificationEngine
from .exceptions import (
    AdapterTimeoutError,
    ChannelNotImplementedError,
    ConfigurationError,
    DeliveryError,
    NotificationEngineError,
    StoreError,
    StoreUnavailableError,
    TriggerError,
)
from .health import HealthRegistry, HealthReport
from .metrics import EngineMetrics
from .preferences import ChannelContact, UserNotificationPreference
from .priority import order_batch, score
from .recorder import OutcomeRecorder
from .retry import RetryPolicy, connect_with_retry
from .router import ChannelRouter
from .service import NotificationService
from .triggers import Trigger, TriggerScheduler
from .work_item import NotificationRequest, WorkItem

__all__ = [
    # Core types
    "Channel",
    "WorkItemStatus",
    "WorkItem",
    "NotificationRequest",
    "UserNotificationPreference",
    "ChannelContact",
    "OutboundMessage",
    "DeliveryRecord",
    "DeliveryOutcome",
    "HistoryRecord",
    # Pipeline
    "score",
    "order_batch",
    "is_eligible",
    "EligibilityVerdict",
    "ChannelRouter",
    "OutcomeRecorder",
    "DrainLoop",
    "DrainState",
    "DrainCycleReport",
    "Trigger",
    "TriggerScheduler",
    "NotificationService",
    "NotificationEngine",
    # Ambient
    "EngineSettings",
    "setup_logging",
    "EngineMetrics",
    "HealthRegistry",
    "HealthReport",
    "RetryPolicy",
    "connect_with_retry",
    # Errors
    "NotificationEngineError",
    "ConfigurationError",
    "StoreError",
    "StoreUnavailableError",
    "DeliveryError",
    "AdapterTimeoutError",
    "ChannelNotImplementedError",
    "TriggerError",
]
