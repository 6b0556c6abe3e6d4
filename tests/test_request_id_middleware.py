from __future__ import annotations

from fastapi.testclient import TestClient

from admission_gate.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_and_duration_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_request_id_on_rate_limited_route():
    resp = client.post("/v1/hello", headers={"X-Request-ID": "hello-1", "X-Forwarded-For": "192.0.2.200"})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == "hello-1"
