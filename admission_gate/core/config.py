"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Malformed rate limit values (non-positive limit or window) fail here, when
settings are constructed, never while serving a request.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return RateLimitSettings()  # type: ignore[call-arg]


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        "INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Log destination",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Admission gate configuration.

    ``requests`` and ``window_seconds`` form the single (limit, window) pair
    applied to every protected route.
    """

    enabled: bool = Field(
        True,
        description="Enable the admission gate on protected routes",
    )
    requests: int = Field(
        10,
        description="Maximum number of admitted requests per sliding window (per client)",
        ge=1,
    )
    window_seconds: float = Field(
        60.0,
        description="Sliding window length in seconds",
        gt=0,
    )
    include_headers: bool = Field(
        True,
        description="Attach X-RateLimit-* headers to admitted responses",
    )
    strategy: Literal["two_step", "atomic"] = Field(
        "two_step",
        description=(
            "two_step: count then record (accepts bounded slack under races); "
            "atomic: single store-side count-and-insert"
        ),
    )
    store_backend: Literal["memory", "sql", "redis"] = Field(
        "memory",
        description="Backend holding recent request records",
    )
    store_timeout_seconds: float = Field(
        2.0,
        description="Upper bound for every individual store call",
        gt=0,
    )
    database_url: str = Field(
        "sqlite+aiosqlite:///./rate_limits.db",
        description="SQLAlchemy async URL for the sql backend",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis URL for the redis backend",
    )
    redis_key_prefix: str = Field(
        "rate_limits",
        description="Key namespace for the redis backend",
    )
    trusted_proxy_count: int = Field(
        0,
        description=(
            "Number of trusted reverse proxies appending to X-Forwarded-For; "
            "0 uses the left-most entry"
        ),
        ge=0,
    )
    anonymous_client_id: str = Field(
        "anonymous",
        description="Shared bucket used when no client identifier can be resolved",
        min_length=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    debug: bool = False
    log: LogSettings = Field(default_factory=_build_log_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
