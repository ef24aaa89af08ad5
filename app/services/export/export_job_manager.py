# app/services/export/export_job_manager.py
"""
Export Job Manager for detached pipeline execution.

Spawns one background task per export request, tracks running tasks in
memory, and recovers requests orphaned by a restart.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from app.errors import PipelineFailure
from app.models import IN_FLIGHT_EXPORT_STATUSES, ExportRequest, ExportStatus
from app.storage.base import StorageProvider
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class ExportJobManager:
    """
    Manages export pipeline tasks.

    Tasks are spawn-and-forget: the request handler returns as soon as the
    task is scheduled, and everything the task learns is written to the
    ExportRequest row.
    """

    # Class-level storage for running export tasks
    _running_jobs: dict[str, asyncio.Task] = {}

    @classmethod
    def start(
        cls,
        export_id: str,
        session_factory: Callable[[], Session] | None = None,
        storage: StorageProvider | None = None,
    ) -> asyncio.Task:
        """
        Schedule the pipeline for an already-persisted export request.

        Must be called from inside a running event loop.
        """
        export_id = str(export_id)
        task = asyncio.create_task(cls._execute_job(export_id, session_factory, storage))
        cls._running_jobs[export_id] = task

        # Clean up task reference when done
        task.add_done_callback(lambda t: cls._running_jobs.pop(export_id, None))

        logger.info(
            f"Scheduled export job {export_id}",
            extra={"event": "export_job_scheduled", "export_id": export_id},
        )
        return task

    @classmethod
    async def _execute_job(
        cls,
        export_id: str,
        session_factory: Callable[[], Session] | None,
        storage: StorageProvider | None,
    ) -> None:
        """
        Run the pipeline with its own session.

        The pipeline persists failures itself; anything that escapes is
        logged here and goes no further.
        """
        from app.database import session_scope
        from app.services.export.export_pipeline import ExportPipeline

        # Background tasks never share the request's session
        with session_scope(session_factory) as db:
            try:
                pipeline = ExportPipeline(export_id, db, storage=storage)
                result = await pipeline.execute()
                logger.info(
                    f"Export job {export_id} completed",
                    extra={
                        "event": "export_job_completed",
                        "export_id": export_id,
                        "size_bytes": result.size_bytes,
                        "duration_ms": result.duration_ms,
                    },
                )

            except PipelineFailure as e:
                logger.error(
                    f"Export job {export_id} failed at step {e.step}: {e.message}",
                    extra={"event": "export_job_failed", "export_id": export_id},
                )

            except Exception as e:
                logger.exception(f"Export job {export_id} crashed: {e}")

    @classmethod
    def get_task(cls, export_id: str) -> asyncio.Task | None:
        """Running task for an export, if this process started it."""
        return cls._running_jobs.get(str(export_id))

    @classmethod
    def get_running_count(cls) -> int:
        """Get the number of currently running export tasks."""
        return len([t for t in cls._running_jobs.values() if not t.done()])

    @classmethod
    def cleanup_stale_exports(cls, db: Session, stale_hours: int = 2) -> int:
        """
        Fail exports stuck in queued/processing for longer than stale_hours.

        Called on startup: a task that was running when the process died
        will never update its row again.

        Returns:
            Number of exports marked failed
        """
        cutoff = utcnow() - timedelta(hours=stale_hours)

        stale_exports = (
            db.query(ExportRequest)
            .filter(
                ExportRequest.status.in_(IN_FLIGHT_EXPORT_STATUSES),
                ExportRequest.created_at < cutoff,
            )
            .all()
        )

        count = 0
        for export in stale_exports:
            if str(export.id) in cls._running_jobs:
                continue
            export.status = ExportStatus.FAILED.value
            export.error = "Export timed out or was orphaned by a restart"
            export.completed_at = utcnow()
            count += 1

        if count > 0:
            db.commit()
            logger.warning(
                f"Cleaned up {count} stale exports",
                extra={"event": "stale_exports_cleanup", "count": count},
            )

        return count
