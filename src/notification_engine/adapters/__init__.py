"""Channel adapters and output sinks."""

from __future__ import annotations

from .batching import BatchingChannelAdapter
from .console import ConsoleChannelAdapter
from .memory import InMemoryChannelAdapter
from .push import HttpPushAdapter
from .redis_sink import RedisMetricsSink
from .smtp import SmtpEmailAdapter

__all__ = [
    "BatchingChannelAdapter",
    "ConsoleChannelAdapter",
    "HttpPushAdapter",
    "InMemoryChannelAdapter",
    "RedisMetricsSink",
    "SmtpEmailAdapter",
]
