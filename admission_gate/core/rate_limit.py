"""Rate limiting dependency for FastAPI routes.

This module wires the admission gate into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the store backend is selected by settings behind an
  abstract interface.
- Fail-open: store outages never turn into 5xx responses.

Usage:
    @router.post("/protected", dependencies=[Depends(enforce_rate_limit)])
    async def protected_endpoint(): ...
"""

from __future__ import annotations

import logging

from fastapi import Request, Response

from admission_gate.adapters.rate_limit import create_store
from admission_gate.core.config import RateLimitSettings, settings
from admission_gate.core.errors import RateLimitExceededError
from admission_gate.core.gate import AdmissionGate, rate_limit_headers
from admission_gate.core.window import SlidingWindowEvaluator, WindowConfig

logger = logging.getLogger(__name__)


_gate: AdmissionGate | None = None
_gate_config: RateLimitSettings | None = None


def build_admission_gate(rate_limit_settings: RateLimitSettings) -> AdmissionGate:
    """Build a gate (store, evaluator, gate) from settings.

    Raises:
        ConfigurationAppError: If the (limit, window) pair, the store backend
            or the strategy is invalid.
    """

    store = create_store(rate_limit_settings)
    evaluator = SlidingWindowEvaluator(
        store,
        WindowConfig.from_settings(rate_limit_settings),
        store_timeout_seconds=rate_limit_settings.store_timeout_seconds,
        strategy=rate_limit_settings.strategy,
    )
    logger.info(
        "rate_limit.configured",
        extra={
            "backend": store.backend,
            "strategy": rate_limit_settings.strategy,
            "limit": rate_limit_settings.requests,
            "window_s": rate_limit_settings.window_seconds,
        },
    )
    return AdmissionGate(
        evaluator,
        include_headers=rate_limit_settings.include_headers,
        trusted_proxy_count=rate_limit_settings.trusted_proxy_count,
        anonymous_id=rate_limit_settings.anonymous_client_id,
    )


async def get_admission_gate() -> AdmissionGate:
    """Return the process-wide admission gate.

    The instance is cached in-module so store connections are reused across
    requests. If configuration changes (primarily in tests), the gate is
    rebuilt and the previous store is closed.

    Returns:
        AdmissionGate: Configured gate instance.
    """

    global _gate, _gate_config

    config = settings.rate_limit
    if _gate is None or _gate_config != config:
        previous = _gate
        _gate = build_admission_gate(config)
        _gate_config = config.model_copy()
        if previous is not None:
            await _close_store(previous)

    return _gate


async def _close_store(gate: AdmissionGate) -> None:
    store = gate.evaluator.store
    try:
        await store.close()
    except Exception as exc:
        logger.warning(
            "rate_limit.store_close_failed",
            extra={"backend": store.backend, "error_type": type(exc).__name__},
        )


async def reset_admission_gate() -> None:
    """Drop the cached gate and close its store."""

    global _gate, _gate_config

    gate, _gate, _gate_config = _gate, None, None
    if gate is not None:
        await _close_store(gate)


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing the admission gate.

    When enabled, evaluates one request for the resolved client. Admitted
    requests get X-RateLimit-* headers on the route's response; denied
    requests raise ``RateLimitExceededError``, rendered as HTTP 429 by the
    exception handlers.

    Args:
        request: FastAPI request.
        response: Response the route will return (headers are attached here).

    Raises:
        RateLimitExceededError: When the client is over its limit.
    """

    if not settings.rate_limit.enabled:
        return

    gate = await get_admission_gate()
    decision = await gate.check(request)

    if not decision.allowed:
        raise RateLimitExceededError(decision)

    if gate.include_headers:
        for name, value in rate_limit_headers(decision).items():
            response.headers[name] = value
