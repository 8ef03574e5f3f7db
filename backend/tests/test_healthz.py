from __future__ import annotations

import os

from fastapi.testclient import TestClient

os.environ.setdefault("STUDY_PLANNER_DATABASE_URL", "sqlite://")

from study_planner.main import app  # noqa: E402
from study_planner.db.session import dispose_engine  # noqa: E402


def teardown_module() -> None:  # pragma: no cover - test cleanup
    dispose_engine()


def test_health_endpoint_reports_timezone() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "timezone": "UTC"}


def test_database_health_endpoint_success() -> None:
    client = TestClient(app)
    response = client.get("/healthz/database")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert "pool" in payload


def test_database_health_endpoint_failure(monkeypatch) -> None:
    client = TestClient(app)

    def raise_runtime_error():
        raise RuntimeError("missing database url")

    monkeypatch.setattr("study_planner.main.get_engine", raise_runtime_error)
    response = client.get("/healthz/database")
    assert response.status_code == 503
    assert response.json()["detail"] == "missing database url"
