"""Factory for creating rate limit store instances."""

import math

from admission_gate.adapters.rate_limit.base import AbstractRateLimitStore
from admission_gate.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from admission_gate.adapters.rate_limit.redis_store import RedisRateLimitStore
from admission_gate.adapters.rate_limit.sql import SqlRateLimitStore
from admission_gate.core.config import RateLimitSettings, settings
from admission_gate.core.errors import ConfigurationAppError


def create_store(rate_limit_settings: RateLimitSettings | None = None) -> AbstractRateLimitStore:
    """Instantiate the store selected by ``RATE_LIMIT_STORE_BACKEND``.

    Connections are opened lazily by the backends, so creating a store never
    touches the network.

    Returns:
        AbstractRateLimitStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend name is unknown.
    """
    cfg = rate_limit_settings or settings.rate_limit
    backend = cfg.store_backend.lower()

    if backend == "memory":
        return InMemoryRateLimitStore()

    if backend == "sql":
        return SqlRateLimitStore.from_url(
            cfg.database_url,
            timeout_seconds=cfg.store_timeout_seconds,
        )

    if backend == "redis":
        return RedisRateLimitStore.from_url(
            cfg.redis_url,
            key_prefix=cfg.redis_key_prefix,
            timeout_seconds=cfg.store_timeout_seconds,
            record_ttl_seconds=math.ceil(cfg.window_seconds),
        )

    raise ConfigurationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unknown rate limit store backend: '{backend}'. "
            "Supported backends: memory, sql, redis"
        ),
    )
