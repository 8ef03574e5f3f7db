from __future__ import annotations

from sqlalchemy import create_engine, text

from study_planner.db import monitoring


def test_saturated_pool_is_reported(monkeypatch, tmp_path) -> None:
    emitted: list[tuple[str, dict[str, object]]] = []

    def record(event_name: str, **payload: object) -> None:
        emitted.append((event_name, payload))

    monkeypatch.setattr(monitoring, "_SATURATION_INTERVAL", 0)
    monkeypatch.setattr(monitoring, "emit_event", record)

    engine = create_engine(f"sqlite:///{tmp_path / 'planner.db'}", pool_size=1, max_overflow=0)
    try:
        monitoring.instrument_engine(engine)
        assert monitoring.pool_capacity(engine) == 1

        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            assert monitoring.get_pool_snapshot(engine)["in_use"] == 1

        assert [name for name, _ in emitted] == ["document_store_pool_saturated"]
        payload = emitted[0][1]
        assert payload["in_use"] == 1
        assert payload["capacity"] == 1
        assert payload["backend"] == "sqlite"

        snapshot = monitoring.get_pool_snapshot(engine)
        assert snapshot["connects"] == 1
        assert snapshot["checkouts"] == 1
        assert snapshot["checkins"] == 1
        assert snapshot["in_use"] == 0
    finally:
        engine.dispose()


def test_unsaturated_pool_stays_quiet(monkeypatch, tmp_path) -> None:
    emitted: list[str] = []
    monkeypatch.setattr(monitoring, "_SATURATION_INTERVAL", 0)
    monkeypatch.setattr(monitoring, "emit_event", lambda name, **payload: emitted.append(name))

    engine = create_engine(f"sqlite:///{tmp_path / 'planner.db'}", pool_size=2, max_overflow=1)
    try:
        monitoring.instrument_engine(engine)
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        assert emitted == []
        assert monitoring.get_pool_snapshot(engine)["capacity"] == 3
    finally:
        engine.dispose()


def test_snapshot_for_unknown_engine_reports_zero_counters() -> None:
    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        snapshot = monitoring.get_pool_snapshot(engine)
        assert (snapshot["connects"], snapshot["checkouts"], snapshot["checkins"]) == (0, 0, 0)
        assert snapshot["in_use"] == 0
    finally:
        engine.dispose()
