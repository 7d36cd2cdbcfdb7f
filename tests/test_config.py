"""Tests for EngineSettings and logging setup."""

from __future__ import annotations

import logging
from datetime import time

import pytest
from pydantic import ValidationError

from notification_engine.config import EngineSettings, setup_logging
from notification_engine.delivery import Channel


def test_defaults() -> None:
    settings = EngineSettings(_env_file=None)

    assert settings.drain_interval_seconds == 10.0
    assert settings.drain_batch_size == 100
    assert settings.digest_local_time == time(9, 0)
    assert settings.digest_timezone == "Asia/Tokyo"
    assert settings.required_channels == []
    assert settings.metrics_key == "notification_metrics"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTIFY_DRAIN_BATCH_SIZE", "25")
    monkeypatch.setenv("NOTIFY_REQUIRED_CHANNELS", '["email", "chat_push"]')
    monkeypatch.setenv("NOTIFY_DIGEST_LOCAL_TIME", "07:30")
    monkeypatch.setenv("NOTIFY_LOG_LEVEL", "debug")

    settings = EngineSettings(_env_file=None)

    assert settings.drain_batch_size == 25
    assert settings.required_channels == [Channel.EMAIL, Channel.CHAT_PUSH]
    assert settings.digest_local_time == time(7, 30)
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "overrides",
    [
        {"drain_batch_size": 0},
        {"drain_batch_size": 5000},
        {"drain_interval_seconds": 0},
        {"log_level": "chatty"},
        {"required_channels": ["fax"]},
    ],
)
def test_invalid_settings(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        EngineSettings(_env_file=None, **overrides)  # type: ignore[arg-type]


def test_setup_logging_quiets_client_libraries() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(EngineSettings(_env_file=None, log_level="DEBUG"))

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
