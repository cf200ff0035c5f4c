"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reflects a real round-trip to the database
  - No authentication required
"""

from __future__ import annotations

from sqlalchemy import create_engine

from api.main import API_VERSION, app


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == API_VERSION
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_reports_unreachable_database(api_client, monkeypatch, tmp_path):
    """A failing database turns the status to degraded instead of a 500."""
    broken = create_engine(f"sqlite:///{tmp_path / 'missing-dir' / 'x.db'}")
    monkeypatch.setattr(app.state, "engine", broken)

    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_unknown_route_uses_error_envelope(api_client):
    resp = api_client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "HTTP_404"


def test_wrong_method_uses_error_envelope(api_client):
    resp = api_client.delete("/api/v1/health")
    assert resp.status_code == 405
    assert resp.json()["error"] == {"code": "HTTP_405", "message": "Method Not Allowed", "detail": None}
