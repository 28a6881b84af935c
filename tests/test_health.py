"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'error' (status 'degraded') when the DB is unreachable
  - No authentication required, and no session is created for health checks
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from tests.helpers import session_cookies


def test_health_returns_200_with_components(api):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_does_not_start_session(api):
    """Load balancer health checks must not create a session row per hit."""
    resp = api.client.get("/api/v1/health")
    assert session_cookies(resp) == []


def test_health_reports_database_error(api, monkeypatch: pytest.MonkeyPatch):
    def unreachable() -> None:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(api.store, "ping", unreachable)
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"
