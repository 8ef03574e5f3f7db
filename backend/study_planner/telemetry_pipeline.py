"""Telemetry listener that records planner data events in the audit table.

Listeners run inline with ``emit_event``. When that happens on a running
event loop the audit write is handed to the default executor so the loop is
never blocked on the database; :func:`drain_pending` waits for those writes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

from .db.session import session_scope
from .planner import DEMO_USER
from .repositories.study_documents import study_documents
from .telemetry import TelemetryEvent, register_listener

logger = logging.getLogger(__name__)

_MONITORED_EVENTS: Set[str] = {
    "week_repaired",
    "achievement_cascade_deleted",
    "schedule_data_deleted",
}

_pending: Set[asyncio.Future] = set()


def _write_audit(owner: str, event_type: str, payload: Dict[str, Any]) -> None:
    try:
        with session_scope() as session:
            study_documents.record_audit(session, owner, event_type, payload)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist telemetry event %s for owner=%s", event_type, owner)


def _persist_event(event: TelemetryEvent) -> None:
    if event.name not in _MONITORED_EVENTS:
        return
    owner = event.payload.get("owner")
    if not isinstance(owner, str) or not owner.strip() or owner == DEMO_USER:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        _write_audit(owner, event.name, dict(event.payload))
        return
    future = loop.run_in_executor(None, _write_audit, owner, event.name, dict(event.payload))
    _pending.add(future)
    future.add_done_callback(_pending.discard)


def pending_count() -> int:
    return len(_pending)


async def drain_pending() -> None:
    """Wait for audit writes still running in the executor."""
    loop = asyncio.get_running_loop()
    _pending.difference_update([future for future in list(_pending) if future.done()])
    waiting = [future for future in _pending if future.get_loop() is loop]
    if waiting:
        await asyncio.gather(*waiting, return_exceptions=True)


register_listener(_persist_event)

__all__ = ["_MONITORED_EVENTS", "drain_pending", "pending_count"]
