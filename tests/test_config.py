"""Tests for settings validation and the window configuration derived from it."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from admission_gate.core.config import LogSettings, RateLimitSettings
from admission_gate.core.window import WindowConfig


def test_defaults() -> None:
    cfg = RateLimitSettings()

    assert cfg.requests == 10
    assert cfg.window_seconds == 60
    assert cfg.strategy == "two_step"
    assert cfg.trusted_proxy_count == 0


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_REQUESTS", "25")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_SECONDS", "0.5")
    monkeypatch.setenv("RATE_LIMIT_STORE_BACKEND", "redis")
    monkeypatch.setenv("LOG_FORMAT", "plain")

    cfg = RateLimitSettings()

    assert cfg.requests == 25
    assert cfg.window_seconds == 0.5
    assert cfg.store_backend == "redis"
    assert LogSettings().format == "plain"


@pytest.mark.parametrize(
    "overrides",
    [
        {"requests": 0},
        {"window_seconds": 0},
        {"window_seconds": -1},
        {"store_timeout_seconds": 0},
        {"trusted_proxy_count": -1},
        {"strategy": "token_bucket"},
        {"store_backend": "memcached"},
    ],
)
def test_malformed_values_fail_on_load(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        RateLimitSettings(**overrides)


def test_window_config_from_settings() -> None:
    config = WindowConfig.from_settings(RateLimitSettings(requests=3, window_seconds=2.5))

    assert config.limit == 3
    assert config.window_seconds == 2.5
    assert config.window_seconds_ceil == 3
