# app/main.py
"""
Archival lifecycle service.

Exports: request, poll, download and delete project exports.
Retention: admin endpoints to inspect and run retention policies.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import get_settings
from app.database import session_scope
from app.logging_config import configure_logging
from app.routers import admin_retention_router, exports_router
from app.services.export.export_job_manager import ExportJobManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)

    # Exports left queued/processing by a previous process will never finish
    with session_scope() as db:
        try:
            ExportJobManager.cleanup_stale_exports(db, stale_hours=settings.EXPORT_STALE_HOURS)
        except Exception as e:
            logger.error(f"Stale export cleanup failed at startup: {e}")

    logger.info(
        f"Archival lifecycle service started ({settings.ENVIRONMENT})",
        extra={"event": "startup"},
    )
    yield

    running = ExportJobManager.get_running_count()
    if running:
        logger.warning(f"Shutting down with {running} export jobs still running")


app = FastAPI(title="Archival Lifecycle Service", lifespan=lifespan)

app.include_router(exports_router)
app.include_router(admin_retention_router)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "archival-lifecycle"}
