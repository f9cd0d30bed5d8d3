"""Tests for health check endpoint."""

from fastapi.testclient import TestClient

from src.api.app import create_app


def test_health_returns_ok(settings) -> None:
    """Health endpoint returns 200 with status ok."""
    client = TestClient(create_app(settings))
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
