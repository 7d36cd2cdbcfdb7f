"""Engine settings and logging setup."""

from __future__ import annotations

import logging
from datetime import time

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .delivery import Channel

QUIET_LOGGERS = ("httpx", "httpcore", "aiosmtplib", "sqlalchemy.engine")


class EngineSettings(BaseSettings):
    """Runtime knobs for :class:`~notification_engine.engine.NotificationEngine`.

    Read from ``NOTIFY_*`` environment variables or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        extra="ignore",
    )

    # Drain loop
    drain_interval_seconds: float = Field(default=10.0, gt=0)
    drain_initial_delay_seconds: float = Field(default=1.0, ge=0)
    drain_batch_size: int = Field(default=100, ge=1, le=1000)

    # Adapters
    adapter_timeout_seconds: float = Field(default=30.0, gt=0)
    adapter_sub_batch_size: int = Field(default=100, ge=1)
    adapter_sub_batch_delay_seconds: float = Field(default=1.0, ge=0)
    required_channels: list[Channel] = Field(default_factory=list)

    default_timezone: str = "UTC"

    # Periodic triggers
    retention_days: int = Field(default=90, ge=1)
    digest_local_time: time = time(9, 0)
    digest_timezone: str = "Asia/Tokyo"
    digest_base_priority: int = Field(default=3, ge=0)
    cleanup_local_time: time = time(2, 0)
    source_scan_interval_seconds: float = Field(default=300.0, gt=0)
    metrics_snapshot_interval_seconds: float = Field(default=60.0, gt=0)

    # Startup connection retries
    connect_max_attempts: int = Field(default=5, ge=1)
    connect_base_delay_seconds: float = Field(default=0.5, ge=0)
    connect_max_delay_seconds: float = Field(default=10.0, ge=0)

    log_level: str = "INFO"
    metrics_key: str = "notification_metrics"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level


def setup_logging(settings: EngineSettings | None = None) -> None:
    """Configure a console handler on the root logger.

    Chatty client libraries are held at WARNING.
    """
    settings = settings or EngineSettings()
    level = getattr(logging, settings.log_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(console)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
