"""Tests for the admission gate and its HTTP response contract."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from admission_gate.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from admission_gate.core.gate import AdmissionGate, build_denied_response, rate_limit_headers
from admission_gate.core.window import RateLimitDecision, SlidingWindowEvaluator, WindowConfig


def _gate(clock, *, limit: int = 10, window: float = 60, store=None, **kwargs) -> AdmissionGate:
    evaluator = SlidingWindowEvaluator(
        store or InMemoryRateLimitStore(),
        WindowConfig(limit=limit, window_seconds=window),
        clock=clock,
    )
    return AdmissionGate(evaluator, **kwargs)


def _app(gate: AdmissionGate, operation: Mock) -> FastAPI:
    app = FastAPI()

    @app.get("/protected")
    async def protected(request: Request):
        return await gate.evaluate_and_admit(request, operation)

    return app


def _from(ip: str) -> dict[str, str]:
    return {"X-Forwarded-For": ip}


class TestEvaluateAndAdmit:
    def test_admitted_requests_carry_headers(self, clock) -> None:
        operation = Mock(return_value={"ok": True})
        client = TestClient(_app(_gate(clock), operation))

        remaining = []
        for _ in range(10):
            resp = client.get("/protected", headers=_from("203.0.113.7"))
            assert resp.status_code == 200
            assert resp.json() == {"ok": True}
            assert resp.headers["X-RateLimit-Limit"] == "10"
            assert resp.headers["X-RateLimit-Reset"] == str(int(clock() + 60))
            remaining.append(int(resp.headers["X-RateLimit-Remaining"]))

        assert remaining == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
        assert operation.call_count == 10

    def test_denied_request_never_invokes_operation(self, clock) -> None:
        operation = Mock(return_value={"ok": True})
        client = TestClient(_app(_gate(clock, limit=2), operation))

        client.get("/protected", headers=_from("203.0.113.7"))
        client.get("/protected", headers=_from("203.0.113.7"))
        resp = client.get("/protected", headers=_from("203.0.113.7"))

        assert resp.status_code == 429
        assert operation.call_count == 2

    def test_denial_body_and_headers(self, clock) -> None:
        client = TestClient(_app(_gate(clock, limit=1), Mock(return_value={})))

        client.get("/protected", headers=_from("203.0.113.7"))
        clock.advance(0.5)
        resp = client.get("/protected", headers=_from("203.0.113.7"))

        assert resp.status_code == 429
        body = resp.json()
        assert body == {
            "error": "Rate limit exceeded",
            "message": "Too many requests. Try again in 60 seconds.",
            "retryAfter": 60,
            "limit": 1,
            "window": 60,
        }
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["X-RateLimit-Limit"] == "1"
        assert 1 <= int(resp.headers["Retry-After"]) <= 60

    def test_async_operation_returning_response(self, clock) -> None:
        async def operation():
            return PlainTextResponse("done", status_code=201)

        client = TestClient(_app(_gate(clock), operation))
        resp = client.get("/protected")

        assert resp.status_code == 201
        assert resp.text == "done"
        assert resp.headers["X-RateLimit-Remaining"] == "9"

    def test_headers_can_be_disabled_for_admitted_responses(self, clock) -> None:
        client = TestClient(_app(_gate(clock, limit=1, include_headers=False), Mock(return_value={})))

        allowed = client.get("/protected")
        denied = client.get("/protected")

        assert "X-RateLimit-Limit" not in allowed.headers
        assert denied.status_code == 429
        assert denied.headers["X-RateLimit-Limit"] == "1"

    def test_clients_are_limited_independently(self, clock) -> None:
        client = TestClient(_app(_gate(clock, limit=10), Mock(return_value={})))

        statuses: dict[str, list[int]] = {"A": [], "B": []}
        for _ in range(11):
            statuses["A"].append(client.get("/protected", headers=_from("198.51.100.1")).status_code)
            statuses["B"].append(client.get("/protected", headers=_from("198.51.100.2")).status_code)

        assert statuses["A"] == [200] * 10 + [429]
        assert statuses["B"] == [200] * 10 + [429]

    def test_store_outage_admits_without_server_error(self, failing_store, clock) -> None:
        operation = Mock(return_value={"ok": True})
        client = TestClient(_app(_gate(clock, limit=1, store=failing_store), operation))

        responses = [client.get("/protected", headers=_from("203.0.113.7")) for _ in range(5)]

        assert [r.status_code for r in responses] == [200] * 5
        assert operation.call_count == 5

    def test_wait_past_window_admits_again(self, clock) -> None:
        client = TestClient(_app(_gate(clock, limit=10), Mock(return_value={})))
        for _ in range(10):
            client.get("/protected", headers=_from("203.0.113.7"))
        assert client.get("/protected", headers=_from("203.0.113.7")).status_code == 429

        clock.advance(61)
        resp = client.get("/protected", headers=_from("203.0.113.7"))

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == "9"


class TestHeaderRendering:
    def test_allowed_headers(self) -> None:
        decision = RateLimitDecision(
            allowed=True, limit=5, remaining=3, reset_at=1234, retry_after_seconds=None, window_seconds=60
        )
        assert rate_limit_headers(decision) == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "3",
            "X-RateLimit-Reset": "1234",
        }

    def test_fractional_window_in_body(self) -> None:
        decision = RateLimitDecision(
            allowed=False, limit=5, remaining=0, reset_at=1234, retry_after_seconds=1, window_seconds=0.5
        )
        response = build_denied_response(decision)

        assert response.status_code == 429
        assert b'"window":0.5' in response.body
        assert response.headers["Retry-After"] == "1"


@pytest.mark.asyncio
async def test_check_stores_decision_on_request_state(clock) -> None:
    gate = _gate(clock, limit=3)
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(b"x-real-ip", b"192.0.2.44")],
        "client": ("10.0.0.1", 1234),
    }
    request = Request(scope)

    decision = await gate.check(request)

    assert request.state.rate_limit is decision
    assert decision.remaining == 2
    assert gate.resolve_client_id(request) == "192.0.2.44"
