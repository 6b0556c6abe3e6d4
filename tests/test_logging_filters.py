"""Tests for sensitive data filtering and request context in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from admission_gate.core.logging import (
    JsonFormatter,
    RequestContextFilter,
    SensitiveDataFilter,
    clear_request_context,
    redact,
    set_client_hash,
    set_request_id,
)


@pytest.fixture
def capture():
    """Logger wired like production: context, redaction, JSON."""

    logger = logging.getLogger("test_admission_logging")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_context()


def test_sensitive_filter_redacts_client_addresses(capture):
    """Raw client addresses never reach the log output."""

    logger, stream = capture
    logger.info(
        "rate_limit.exceeded",
        extra={
            "client_ip": "203.0.113.7",
            "x-forwarded-for": "203.0.113.7, 10.0.0.2",
            "limit": 10,
        },
    )

    output = stream.getvalue()

    assert "203.0.113.7" not in output
    assert "[REDACTED]" in output
    assert json.loads(output)["limit"] == 10


def test_sensitive_filter_redacts_connection_urls(capture):
    logger, stream = capture
    logger.info(
        "rate_limit.store_configured",
        extra={"database_url": "postgresql+asyncpg://gate:hunter2@db/gate", "backend": "sql"},
    )

    output = stream.getvalue()

    assert "hunter2" not in output
    assert json.loads(output)["backend"] == "sql"


def test_sensitive_filter_redacts_nested_headers(capture):
    logger, stream = capture
    logger.info(
        "request_headers",
        extra={"headers": {"X-Real-IP": "198.51.100.4", "user-agent": "pytest"}},
    )

    payload = json.loads(stream.getvalue())

    assert payload["headers"] == {"X-Real-IP": "[REDACTED]", "user-agent": "pytest"}


def test_safe_fields_pass_through(capture):
    logger, stream = capture
    logger.info(
        "rate_limit.allowed",
        extra={"route": "/v1/hello", "remaining": 9, "window_seconds": 60.0},
    )

    output = stream.getvalue()

    assert "/v1/hello" in output
    assert "[REDACTED]" not in output


def test_request_context_adds_request_id_and_key_hash(capture):
    logger, stream = capture
    set_request_id("req-123")
    set_client_hash("abcdef0123456789")

    logger.info("rate_limit.allowed")

    payload = json.loads(stream.getvalue())
    assert payload["request_id"] == "req-123"
    assert payload["key_hash"] == "abcdef0123456789"


def test_request_context_is_absent_after_clear(capture):
    logger, stream = capture
    set_request_id("req-123")
    set_client_hash("abcdef0123456789")
    clear_request_context()

    logger.info("startup")

    payload = json.loads(stream.getvalue())
    assert "request_id" not in payload
    assert "key_hash" not in payload


def test_redact_handles_lists_and_tuples():
    value = {"events": [{"client_id": "203.0.113.7"}, ("x",)]}

    assert redact(value, {"client_id"}) == {"events": [{"client_id": "[REDACTED]"}, ("x",)]}
