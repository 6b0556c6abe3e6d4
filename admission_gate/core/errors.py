"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from admission_gate.core.window import RateLimitDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    field: str
    operation: str
    backend: str
    timeout_s: float
    http_status: int
    retry_after: float
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when the gate is configured with invalid values.

    Surfaced at startup/configuration-load time, never per request.
    """


class StoreAppError(AppError):
    """Raised by rate limit stores on connectivity, timeout or quota failures."""


class RateLimitExceededError(AppError):
    """Raised by the FastAPI dependency when a request is denied."""

    def __init__(self, decision: "RateLimitDecision") -> None:
        self.decision = decision
        super().__init__(
            code="rate_limit_exceeded",
            message="Rate limit exceeded",
            details={"retry_after": float(decision.retry_after_seconds or 0)},
        )
