"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and pins the gate settings the
tests rely on before any module builds the global settings object.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "10")
os.environ.setdefault("RATE_LIMIT_WINDOW_SECONDS", "60")
os.environ.setdefault("RATE_LIMIT_STORE_BACKEND", "memory")

import pytest  # noqa: E402


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FailingStore:
    """Rate limit store whose every call fails like an unreachable backend."""

    backend = "failing"
    supports_atomic = True

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def _fail(self, operation: str):
        from admission_gate.core.errors import StoreAppError

        self.calls.append(operation)
        raise StoreAppError(code="rate_limit_store_error", message=f"{operation} failed")

    async def record(self, client_id, timestamp):
        await self._fail("record")

    async def count_since(self, client_id, since):
        await self._fail("count_since")

    async def delete_older_than(self, threshold):
        await self._fail("delete_older_than")

    async def oldest_since(self, client_id, since):
        await self._fail("oldest_since")

    async def record_if_below(self, client_id, timestamp, since, limit):
        self.calls.append("record_if_below")
        raise ConnectionResetError("peer went away")

    async def close(self) -> None:
        return None


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()
