"""Sliding-window log admission algorithm.

For a client and the current time ``now``:

1. ``window_start = now - window_seconds``.
2. Lazy global cleanup: ``delete_older_than(window_start)``. Failures are
   logged and ignored; the next evaluation retries.
3. ``count_since(client_id, window_start)``.
4. ``count >= limit`` denies with ``remaining = 0``; otherwise the request is
   recorded and allowed with ``remaining = limit - count - 1``.
5. ``reset_at = now + window_seconds`` in both branches.

With the ``two_step`` strategy steps 3 and 4 are separate store calls, so two
concurrent evaluations for one client can both observe ``limit - 1`` and both
be admitted. That slack is bounded by concurrency and accepted. The
``atomic`` strategy collapses the count and the insert into a single
store-side operation for stores that offer one.

Every store call is bounded by ``store_timeout_seconds``. Store failures
while counting or recording fail open: the request is admitted, flagged as
degraded, and logged. ``evaluate`` never raises.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, TypeVar

from admission_gate.adapters.rate_limit.base import AbstractRateLimitStore
from admission_gate.core.client_identity import hash_client_id
from admission_gate.core.config import RateLimitSettings
from admission_gate.core.errors import ConfigurationAppError, StoreAppError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = Literal["two_step", "atomic"]


@dataclass(frozen=True)
class WindowConfig:
    """Immutable (limit, window) pair.

    Raises:
        ConfigurationAppError: If limit or window_seconds are not positive.
    """

    limit: int
    window_seconds: float

    def __post_init__(self) -> None:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ConfigurationAppError(
                code="invalid_rate_limit",
                message="limit must be a positive integer",
                details={"field": "limit"},
            )
        if not self.window_seconds > 0:
            raise ConfigurationAppError(
                code="invalid_rate_limit_window",
                message="window_seconds must be > 0",
                details={"field": "window_seconds"},
            )

    @classmethod
    def from_settings(cls, rate_limit_settings: RateLimitSettings) -> "WindowConfig":
        return cls(
            limit=rate_limit_settings.requests,
            window_seconds=rate_limit_settings.window_seconds,
        )

    @property
    def window_seconds_ceil(self) -> int:
        return int(math.ceil(self.window_seconds))


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one admission evaluation (never persisted).

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max admissions per window.
        remaining: Admissions left in the window after this one (>= 0).
        reset_at: UNIX epoch seconds reported as the window reset.
        retry_after_seconds: Suggested wait when denied, None when allowed.
        window_seconds: Window length the decision was made against.
        degraded: True when the store failed and the decision fell back to allow.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None
    window_seconds: float
    degraded: bool = False


class SlidingWindowEvaluator:
    """Decides allow/deny for a client against a shared store.

    Args:
        store: Shared rate limit store.
        config: The (limit, window) pair.
        clock: Time source returning UNIX time in seconds.
        store_timeout_seconds: Upper bound for each store call.
        strategy: ``two_step`` or ``atomic``.

    Raises:
        ConfigurationAppError: If the timeout is not positive, the strategy is
            unknown, or ``atomic`` is requested for a store without an atomic
            primitive.
    """

    def __init__(
        self,
        store: AbstractRateLimitStore,
        config: WindowConfig,
        *,
        clock: Callable[[], float] = time.time,
        store_timeout_seconds: float = 2.0,
        strategy: Strategy = "two_step",
    ) -> None:
        if not store_timeout_seconds > 0:
            raise ConfigurationAppError(
                code="invalid_store_timeout",
                message="store_timeout_seconds must be > 0",
                details={"field": "store_timeout_seconds"},
            )
        if strategy not in ("two_step", "atomic"):
            raise ConfigurationAppError(
                code="invalid_rate_limit_strategy",
                message=f"Unknown rate limit strategy: '{strategy}'",
                details={"field": "strategy"},
            )
        if strategy == "atomic" and not store.supports_atomic:
            raise ConfigurationAppError(
                code="atomic_strategy_unsupported",
                message=f"The {store.backend} store cannot count and record atomically",
                details={"backend": store.backend},
            )

        self.store = store
        self.config = config
        self.strategy = strategy
        self._clock = clock
        self._timeout = store_timeout_seconds

    async def evaluate(self, client_id: str) -> RateLimitDecision:
        """Evaluate and, when allowed, record one request for ``client_id``."""

        now = self._clock()
        window_start = now - self.config.window_seconds
        reset_at = int(math.ceil(now + self.config.window_seconds))

        await self._cleanup(window_start)

        if self.strategy == "atomic":
            return await self._evaluate_atomic(client_id, now, window_start, reset_at)
        return await self._evaluate_two_step(client_id, now, window_start, reset_at)

    async def _evaluate_two_step(
        self,
        client_id: str,
        now: float,
        window_start: float,
        reset_at: int,
    ) -> RateLimitDecision:
        limit = self.config.limit

        try:
            current_count = await self._call(
                "count_since", self.store.count_since(client_id, window_start)
            )
        except StoreAppError as exc:
            self._log_fail_open(client_id, "count_since", exc)
            return self._allowed(remaining=limit - 1, reset_at=reset_at, degraded=True)

        if current_count >= limit:
            retry_after = await self._retry_after(client_id, now, window_start)
            return self._denied(reset_at=reset_at, retry_after=retry_after)

        remaining = max(0, limit - current_count - 1)
        try:
            await self._call("record", self.store.record(client_id, now))
        except StoreAppError as exc:
            self._log_fail_open(client_id, "record", exc)
            return self._allowed(remaining=remaining, reset_at=reset_at, degraded=True)

        return self._allowed(remaining=remaining, reset_at=reset_at)

    async def _evaluate_atomic(
        self,
        client_id: str,
        now: float,
        window_start: float,
        reset_at: int,
    ) -> RateLimitDecision:
        limit = self.config.limit

        try:
            previous_count = await self._call(
                "record_if_below",
                self.store.record_if_below(client_id, now, window_start, limit),
            )
        except StoreAppError as exc:
            self._log_fail_open(client_id, "record_if_below", exc)
            return self._allowed(remaining=limit - 1, reset_at=reset_at, degraded=True)

        if previous_count is None:
            retry_after = await self._retry_after(client_id, now, window_start)
            return self._denied(reset_at=reset_at, retry_after=retry_after)

        return self._allowed(remaining=max(0, limit - previous_count - 1), reset_at=reset_at)

    async def _cleanup(self, window_start: float) -> None:
        try:
            removed = await self._call(
                "delete_older_than", self.store.delete_older_than(window_start)
            )
        except StoreAppError as exc:
            logger.warning(
                "rate_limit.cleanup_failed",
                extra={
                    "backend": self.store.backend,
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )
            return

        if removed:
            logger.debug(
                "rate_limit.cleanup",
                extra={"backend": self.store.backend, "removed": removed},
            )

    async def _retry_after(self, client_id: str, now: float, window_start: float) -> int:
        """Seconds until the oldest surviving record leaves the window.

        Falls back to the full window when the oldest record cannot be read.
        """
        upper = self.config.window_seconds_ceil
        try:
            oldest = await self._call(
                "oldest_since", self.store.oldest_since(client_id, window_start)
            )
        except StoreAppError as exc:
            logger.warning(
                "rate_limit.retry_after_estimate_failed",
                extra={"backend": self.store.backend, "error_code": exc.code},
            )
            return upper

        if oldest is None:
            return upper

        wait = self.config.window_seconds - (now - oldest.recorded_at)
        return min(upper, max(1, int(math.ceil(wait))))

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a store call under the configured timeout.

        Raises:
            StoreAppError: On timeout, on store errors, and on unexpected
                exceptions from the backend driver.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except StoreAppError:
            raise
        except asyncio.TimeoutError as exc:
            raise StoreAppError(
                code="rate_limit_store_timeout",
                message=f"Store operation '{operation}' timed out",
                details={
                    "backend": self.store.backend,
                    "operation": operation,
                    "timeout_s": self._timeout,
                },
            ) from exc
        except Exception as exc:
            raise StoreAppError(
                code="rate_limit_store_error",
                message=f"Store operation '{operation}' failed: {type(exc).__name__}",
                details={"backend": self.store.backend, "operation": operation},
            ) from exc

    def _allowed(self, *, remaining: int, reset_at: int, degraded: bool = False) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=self.config.limit,
            remaining=max(0, remaining),
            reset_at=reset_at,
            retry_after_seconds=None,
            window_seconds=self.config.window_seconds,
            degraded=degraded,
        )

    def _denied(self, *, reset_at: int, retry_after: int) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=False,
            limit=self.config.limit,
            remaining=0,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
            window_seconds=self.config.window_seconds,
        )

    def _log_fail_open(self, client_id: str, operation: str, exc: StoreAppError) -> None:
        logger.error(
            "rate_limit.store_unavailable",
            extra={
                "backend": self.store.backend,
                "operation": operation,
                "error_code": exc.code,
                "error_message": exc.message,
                "key_hash": hash_client_id(client_id),
                "policy": "fail_open",
            },
        )
