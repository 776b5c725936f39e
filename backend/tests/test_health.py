"""Tests for service-level endpoints and error mapping."""

from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from conftest import auth_headers


def test_health(client: TestClient):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "attempt-service"}


def test_root(client: TestClient):
    data = client.get("/").json()
    assert data["name"] == "Attempt Service API"
    assert data["docs"] == "/docs"


def test_store_outage_returns_503(client: TestClient, make_test):
    test = make_test()
    error = OperationalError("SELECT tests", {}, Exception("server closed the connection"))
    with patch("attempt_service.services.attempt_policy.get_attempt_info", side_effect=error):
        resp = client.get(
            f"/api/student/tests/{test.id}/attempt-info", headers=auth_headers("student-1")
        )
    assert resp.status_code == 503
    body = resp.json()
    assert body["success"] is False
    assert body["error_code"] == "store_unavailable"
