import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from . import telemetry_pipeline
from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import get_engine
from .logging_config import configure_logging
from .planner_routes import router as planner_router


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Study Planner Backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(planner_router)

settings_snapshot = get_settings()
logger.info("Planner starting with timezone: %s", settings_snapshot.timezone)
logger.info("Durable database configured: %s", bool(settings_snapshot.database_url))


@app.on_event("shutdown")
async def flush_audit_writes() -> None:
    pending = telemetry_pipeline.pending_count()
    if pending:
        logger.info("Waiting for %d audit writes before shutdown", pending)
    await telemetry_pipeline.drain_pending()


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "timezone": settings.timezone}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"status": "ok", "pool": get_pool_snapshot(engine)}
