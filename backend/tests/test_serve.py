from __future__ import annotations

import uvicorn

from study_planner import serve
from study_planner.config import get_settings


def test_main_runs_uvicorn_with_configured_address(monkeypatch) -> None:
    calls = []
    monkeypatch.setenv("STUDY_PLANNER_HOST", "127.0.0.1")
    monkeypatch.setenv("STUDY_PLANNER_PORT", "8123")
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    get_settings.cache_clear()

    try:
        serve.main()
    finally:
        get_settings.cache_clear()

    assert len(calls) == 1
    app, kwargs = calls[0]
    assert app == "study_planner.main:app"
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 8123
