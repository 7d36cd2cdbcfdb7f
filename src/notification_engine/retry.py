"""Startup connection retries.

Used only around connecting to the store at startup, never around per-item
processing: a failed delivery is recorded, not retried.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from .config import EngineSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try connecting, and how long to back off between.

    The pause after failed attempt ``n`` is ``base_delay * 2**(n-1)``
    capped at ``max_delay``, scaled into ``[0.5, 1.5)`` when ``jitter`` is on.
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("base_delay and max_delay must be >= 0")
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay must be <= max_delay")

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> RetryPolicy:
        base = settings.connect_base_delay_seconds
        return cls(
            max_attempts=settings.connect_max_attempts,
            base_delay=base,
            max_delay=max(settings.connect_max_delay_seconds, base),
        )

    def backoff(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random()  # noqa: S311
        return delay

    def pauses(self) -> Iterator[float]:
        """Pauses between consecutive attempts; one fewer than ``max_attempts``."""
        for attempt in range(1, self.max_attempts):
            yield self.backoff(attempt)


async def connect_with_retry(
    connect: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str = "connection",
) -> T:
    """Await ``connect`` until it returns something truthy.

    An exception and a falsy result both count as a failed attempt. When the
    attempts run out the last exception is re-raised, or ``ConnectionError``
    if the last attempt merely returned a falsy value.
    """
    pauses = policy.pauses()
    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await connect()
        except Exception as e:  # noqa: BLE001
            if attempt == policy.max_attempts:
                logger.error("%s failed after %d attempts: %s", description, attempt, e)
                raise
            logger.warning(
                "%s attempt %d/%d failed: %s", description, attempt, policy.max_attempts, e
            )
        else:
            if result:
                if attempt > 1:
                    logger.info("%s established after %d attempts", description, attempt)
                return result
            logger.warning(
                "%s attempt %d/%d returned no connection",
                description,
                attempt,
                policy.max_attempts,
            )

        pause = next(pauses, 0.0)
        if pause > 0:
            await asyncio.sleep(pause)

    raise ConnectionError(f"{description} not available after {policy.max_attempts} attempts")
