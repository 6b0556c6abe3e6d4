"""Pydantic schemas for admission gate responses."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RateLimitExceededResponse(BaseModel):
    """Body returned with HTTP 429 when a request is denied."""

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(
        "Rate limit exceeded",
        description="Stable error label.",
    )
    message: str = Field(
        ...,
        description="Human-readable explanation including the suggested wait.",
    )
    retry_after: int = Field(
        ...,
        alias="retryAfter",
        ge=1,
        description="Seconds to wait before retrying (same value as the Retry-After header).",
    )
    limit: int = Field(
        ...,
        ge=1,
        description="Maximum admitted requests per window.",
    )
    window: int | float = Field(
        ...,
        gt=0,
        description="Window length in seconds.",
    )


class QuotaInfo(BaseModel):
    """Quota snapshot echoed by the demo endpoint."""

    limit: int = Field(..., description="Maximum admitted requests per window.")
    remaining: int = Field(..., ge=0, description="Admissions left in the current window.")
    reset_at: int = Field(..., description="UNIX epoch seconds when the window is reported to reset.")
    degraded: bool = Field(
        False,
        description="True when the store was unavailable and the request was admitted fail-open.",
    )


class HelloRequest(BaseModel):
    """Payload for the demo protected endpoint."""

    name: str | None = Field(
        default=None,
        max_length=200,
        description="Name to greet; defaults to 'World'.",
    )


class HelloResponse(BaseModel):
    """Response of the demo protected endpoint."""

    message: str = Field(..., description="Greeting.")
    timestamp: str = Field(..., description="ISO-8601 UTC server time.")
    client_hash: str = Field(
        ...,
        description="Hash of the resolved client identifier (raw addresses are never echoed).",
    )
    rate_limit: QuotaInfo = Field(..., description="Quota after admitting this request.")
