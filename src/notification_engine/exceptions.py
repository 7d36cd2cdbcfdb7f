"""Exception hierarchy for the notification engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .delivery import Channel


CHANNEL_NOT_IMPLEMENTED = "channel-not-implemented"
ADAPTER_RESULT_MISMATCH = "adapter-result-mismatch"


class NotificationEngineError(Exception):
    """Root exception for the notification engine."""


class ConfigurationError(NotificationEngineError):
    """Raised at startup when the engine cannot be wired correctly.

    Missing adapter registrations and an unreachable store are fatal.
    """


class StoreError(NotificationEngineError):
    """Base class for notification store failures."""


class StoreUnavailableError(StoreError):
    """Raised when the store cannot serve a read or write mid-cycle."""


class DeliveryError(NotificationEngineError):
    """Base class for channel delivery failures.

    These never propagate past the router; they become ``failed`` outcomes.
    """


class ChannelNotImplementedError(DeliveryError):
    """Raised when no adapter is registered for a channel."""

    def __init__(self, channel: Channel) -> None:
        self.channel = channel
        super().__init__(CHANNEL_NOT_IMPLEMENTED)


class AdapterTimeoutError(DeliveryError):
    """Raised when a channel adapter call exceeds its time budget."""

    def __init__(self, channel: Channel, timeout: float) -> None:
        self.channel = channel
        self.timeout = timeout
        super().__init__(f"adapter-timeout: {timeout:g}s")


class TriggerError(NotificationEngineError):
    """Raised when a periodic trigger action fails."""

    def __init__(self, trigger_name: str, reason: str) -> None:
        self.trigger_name = trigger_name
        super().__init__(f"Trigger {trigger_name!r} failed: {reason}")
