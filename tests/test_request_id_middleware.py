from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from rate_guard.core.app_factory import create_app


@pytest.fixture
def client(settings_factory):
    with TestClient(create_app(settings_factory())) as test_client:
        yield test_client


def test_preserves_incoming_request_id_header(client: TestClient):
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing(client: TestClient):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_request_id_on_throttled_response(client: TestClient):
    for _ in range(3):
        client.get("/")
    resp = client.get("/", headers={"X-Request-ID": "throttled-1"})

    assert resp.status_code == 429
    assert resp.headers.get("X-Request-ID") == "throttled-1"
