"""Redis hash sink for periodic metrics snapshots."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_METRICS_KEY = "notification_metrics"


class RedisMetricsSink:
    """
    Writes the flat metrics snapshot into one Redis hash.

    ``None`` values are stored as empty strings; everything else as ``str``.
    """

    def __init__(
        self,
        redis_client: Redis,
        key: str = DEFAULT_METRICS_KEY,
        ttl: int | None = None,
    ) -> None:
        self._redis = redis_client
        self.key = key
        self.ttl = ttl

    @staticmethod
    def encode(snapshot: dict[str, Any]) -> dict[str, str]:
        return {
            field: "" if value is None else str(value)
            for field, value in snapshot.items()
        }

    async def write(self, snapshot: dict[str, Any]) -> None:
        await self._redis.hset(self.key, mapping=self.encode(snapshot))
        if self.ttl:
            await self._redis.expire(self.key, self.ttl)
        logger.debug("Metrics snapshot written to %s", self.key)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:  # noqa: BLE001
            logger.warning("Redis ping failed: %s", e)
            return False

    async def aclose(self) -> None:
        await self._redis.aclose()
