"""Admission gate: the boundary protected operations call through.

The gate resolves the caller, asks the evaluator for a decision and renders
that decision as HTTP metadata:

- allowed: the protected operation runs and its response carries
  ``X-RateLimit-Limit``, ``X-RateLimit-Remaining`` and ``X-RateLimit-Reset``
  (UNIX epoch seconds).
- denied: the protected operation is never invoked; the caller gets HTTP 429
  with the same headers plus ``Retry-After`` and a JSON body
  ``{error, message, retryAfter, limit, window}``.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from fastapi import Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from admission_gate.core.client_identity import (
    DEFAULT_ANONYMOUS_ID,
    client_id_from_request,
    hash_client_id,
)
from admission_gate.core.logging import set_client_hash
from admission_gate.core.window import RateLimitDecision, SlidingWindowEvaluator
from admission_gate.schemas.rate_limit import RateLimitExceededResponse

logger = logging.getLogger(__name__)

ProtectedOperation = Callable[[], Union[Any, Awaitable[Any]]]


def _format_window(window_seconds: float) -> int | float:
    return int(window_seconds) if float(window_seconds).is_integer() else window_seconds


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """Build the X-RateLimit-* headers (plus Retry-After on denial)."""

    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining if decision.allowed else 0),
        "X-RateLimit-Reset": str(decision.reset_at),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after_seconds or 1)
    return headers


def build_denied_response(decision: RateLimitDecision) -> JSONResponse:
    """Render a denial as HTTP 429.

    Args:
        decision: A decision with ``allowed=False``.

    Returns:
        JSONResponse with the 429 body and rate limit headers.
    """

    retry_after = decision.retry_after_seconds or 1
    body = RateLimitExceededResponse(
        message=f"Too many requests. Try again in {retry_after} seconds.",
        retry_after=retry_after,
        limit=decision.limit,
        window=_format_window(decision.window_seconds),
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(by_alias=True),
        headers=rate_limit_headers(decision),
    )


class AdmissionGate:
    """Wraps protected operations with sliding-window admission control.

    Args:
        evaluator: Window evaluator bound to a store and a (limit, window) pair.
        include_headers: Attach X-RateLimit-* headers to admitted responses.
            Denied responses always carry them.
        trusted_proxy_count: Reverse proxies trusted to append X-Forwarded-For.
        anonymous_id: Bucket for callers whose identity cannot be resolved.
    """

    def __init__(
        self,
        evaluator: SlidingWindowEvaluator,
        *,
        include_headers: bool = True,
        trusted_proxy_count: int = 0,
        anonymous_id: str = DEFAULT_ANONYMOUS_ID,
    ) -> None:
        self.evaluator = evaluator
        self.include_headers = include_headers
        self.trusted_proxy_count = trusted_proxy_count
        self.anonymous_id = anonymous_id

    def resolve_client_id(self, request: Request) -> str:
        return client_id_from_request(
            request,
            trusted_proxy_count=self.trusted_proxy_count,
            anonymous_id=self.anonymous_id,
        )

    async def check(self, request: Request) -> RateLimitDecision:
        """Resolve the caller and evaluate one request.

        The decision is also stored on ``request.state.rate_limit`` so
        handlers can read the remaining quota.
        """

        client_id = self.resolve_client_id(request)
        key_hash = hash_client_id(client_id)
        set_client_hash(key_hash)

        decision = await self.evaluator.evaluate(client_id)
        request.state.rate_limit = decision

        log_extra = {
            "key_hash": key_hash,
            "anonymous": client_id == self.anonymous_id,
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_s": decision.window_seconds,
            "degraded": decision.degraded,
        }
        if decision.allowed:
            logger.info("rate_limit.allowed", extra=log_extra)
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
            )
        return decision

    async def evaluate_and_admit(
        self,
        request: Request,
        protected_operation: ProtectedOperation,
    ) -> Response:
        """Run ``protected_operation`` only if the caller is admitted.

        Args:
            request: Incoming request.
            protected_operation: Zero-argument callable (sync or async)
                returning a ``Response`` or JSON-serializable data.

        Returns:
            The operation's response with rate limit headers, or a 429.
        """

        decision = await self.check(request)
        if not decision.allowed:
            return build_denied_response(decision)

        result = protected_operation()
        if inspect.isawaitable(result):
            result = await result

        response = result if isinstance(result, Response) else JSONResponse(
            content=jsonable_encoder(result)
        )
        if self.include_headers:
            response.headers.update(rate_limit_headers(decision))
        return response
