"""Connection-pool instrumentation for the planner document store.

Counts connections opened, checked out and returned, and warns when every
pooled connection is in use, since planner writes then queue behind each
other in ``asyncio.to_thread`` workers.
"""

from __future__ import annotations

import logging
import os
import time
import weakref
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event

logger = logging.getLogger(__name__)


@dataclass
class PoolUsage:
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    in_use: int = 0
    last_saturated_emit: float = 0.0


_USAGE_BY_ENGINE: "weakref.WeakKeyDictionary[Engine, PoolUsage]" = weakref.WeakKeyDictionary()
_SATURATION_INTERVAL = float(os.getenv("STUDY_PLANNER_DB_TELEMETRY_INTERVAL", "30"))


def pool_capacity(engine: Engine) -> Optional[int]:
    """Connections the pool can hand out at once; ``None`` when unbounded or not pooled."""
    pool = engine.pool
    size = getattr(pool, "size", None)
    if not callable(size):
        return None
    max_overflow = getattr(pool, "_max_overflow", 0)
    if max_overflow < 0:
        return None
    return size() + max_overflow


def instrument_engine(engine: Engine) -> None:
    """Track document-store pool usage and report saturation."""
    if engine in _USAGE_BY_ENGINE:
        return

    usage = PoolUsage()
    _USAGE_BY_ENGINE[engine] = usage
    capacity = pool_capacity(engine)

    def _check_saturation() -> None:
        if capacity is None or usage.in_use < capacity:
            return
        now = time.time()
        if _SATURATION_INTERVAL > 0 and (now - usage.last_saturated_emit) < _SATURATION_INTERVAL:
            return
        usage.last_saturated_emit = now
        logger.warning("Document store pool saturated: %d of %d connections in use", usage.in_use, capacity)
        emit_event(
            "document_store_pool_saturated",
            backend=engine.url.get_backend_name(),
            in_use=usage.in_use,
            capacity=capacity,
            checkouts=usage.checkouts,
        )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        usage.connects += 1

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        usage.checkouts += 1
        usage.in_use += 1
        _check_saturation()

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        usage.checkins += 1
        usage.in_use = max(usage.in_use - 1, 0)


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    usage = _USAGE_BY_ENGINE.get(engine) or PoolUsage()
    return {
        "status": _safe_pool_status(engine),
        "connects": usage.connects,
        "checkouts": usage.checkouts,
        "checkins": usage.checkins,
        "in_use": usage.in_use,
        "capacity": pool_capacity(engine),
    }


def _safe_pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover
        return f"unavailable: {exc}"


__all__ = ["get_pool_snapshot", "instrument_engine", "pool_capacity"]
