"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and database fields
  - 503 "degraded" when the account database does not answer
  - No authentication required
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

from api.main import __version__


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data == {"status": "ok", "version": __version__, "database": "ok"}


def test_health_reports_unavailable_database(api_client, stores, monkeypatch):
    """A failing ping turns the response into 503 / degraded."""

    def broken_ping():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(stores[0], "ping", broken_ping)
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["database"] == "unavailable"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
