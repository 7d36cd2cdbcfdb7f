"""Port definitions for the notification engine."""

from __future__ import annotations

from .adapter import AdapterHealth, IChannelAdapter
from .producers import IAlertSource, IMetricsSink
from .store import INotificationStore

__all__ = [
    "AdapterHealth",
    "IAlertSource",
    "IChannelAdapter",
    "IMetricsSink",
    "INotificationStore",
]
