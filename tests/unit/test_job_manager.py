"""
Unit tests for ExportJobManager.

Tests task lifecycle (scheduling, tracking, cleanup) and stale export
recovery.
"""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.errors import PipelineFailure
from app.models import ExportRequest, ExportStatus
from app.services.export.export_job_manager import ExportJobManager
from app.utils.time import utcnow

PIPELINE_PATH = "app.services.export.export_pipeline.ExportPipeline"


class TestExportJobManager:
    """Tests for ExportJobManager class."""

    @pytest.fixture
    def mock_session_factory(self):
        session = MagicMock()
        factory = MagicMock(return_value=session)
        return factory

    @pytest.mark.asyncio
    async def test_start_runs_pipeline_with_own_session(self, mock_session_factory):
        export_id = str(uuid.uuid4())
        pipeline = MagicMock()
        pipeline.execute = AsyncMock(return_value=MagicMock(size_bytes=10, duration_ms=5))

        with patch(PIPELINE_PATH, return_value=pipeline) as pipeline_cls:
            task = ExportJobManager.start(export_id, session_factory=mock_session_factory)
            assert ExportJobManager.get_task(export_id) is task
            await task

        session = mock_session_factory.return_value
        pipeline_cls.assert_called_once_with(export_id, session, storage=None)
        pipeline.execute.assert_awaited_once()
        session.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_finished_task_is_forgotten(self, mock_session_factory):
        export_id = str(uuid.uuid4())
        pipeline = MagicMock()
        pipeline.execute = AsyncMock(return_value=MagicMock(size_bytes=10, duration_ms=5))

        with patch(PIPELINE_PATH, return_value=pipeline):
            task = ExportJobManager.start(export_id, session_factory=mock_session_factory)
            await task
            # Done callbacks run on the next loop iteration
            await asyncio.sleep(0)

        assert ExportJobManager.get_task(export_id) is None
        assert ExportJobManager.get_running_count() == 0

    @pytest.mark.asyncio
    async def test_pipeline_failure_is_contained(self, mock_session_factory):
        pipeline = MagicMock()
        pipeline.execute = AsyncMock(side_effect=PipelineFailure("boom", step="Building export"))

        with patch(PIPELINE_PATH, return_value=pipeline):
            task = ExportJobManager.start(str(uuid.uuid4()), session_factory=mock_session_factory)
            await task

        assert task.exception() is None
        mock_session_factory.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, mock_session_factory):
        pipeline = MagicMock()
        pipeline.execute = AsyncMock(side_effect=RuntimeError("unexpected"))

        with patch(PIPELINE_PATH, return_value=pipeline):
            task = ExportJobManager.start(str(uuid.uuid4()), session_factory=mock_session_factory)
            await task

        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_running_count(self, mock_session_factory):
        release = asyncio.Event()

        async def execute():
            await release.wait()
            return MagicMock(size_bytes=0, duration_ms=0)

        pipeline = MagicMock()
        pipeline.execute = execute

        with patch(PIPELINE_PATH, return_value=pipeline):
            tasks = [ExportJobManager.start(str(uuid.uuid4()), session_factory=mock_session_factory) for _ in range(3)]
            await asyncio.sleep(0)
            assert ExportJobManager.get_running_count() == 3
            release.set()
            await asyncio.gather(*tasks)


class TestCleanupStaleExports:
    def _export(self, db, seeded, status, age_hours):
        export = ExportRequest(
            project_id=seeded.project.id,
            facilitator_id=seeded.facilitator.id,
            status=status,
            format="archive",
            options={},
            created_at=utcnow() - timedelta(hours=age_hours),
        )
        db.add(export)
        db.commit()
        return export

    def test_marks_old_in_flight_exports_failed(self, db, seeded):
        stale_queued = self._export(db, seeded, ExportStatus.QUEUED.value, 3)
        stale_processing = self._export(db, seeded, ExportStatus.PROCESSING.value, 5)
        fresh = self._export(db, seeded, ExportStatus.PROCESSING.value, 0)
        finished = self._export(db, seeded, ExportStatus.READY.value, 10)

        count = ExportJobManager.cleanup_stale_exports(db, stale_hours=2)

        assert count == 2
        db.expire_all()
        assert db.get(ExportRequest, stale_queued.id).status == "failed"
        assert db.get(ExportRequest, stale_processing.id).status == "failed"
        assert "orphaned" in db.get(ExportRequest, stale_processing.id).error
        assert db.get(ExportRequest, fresh.id).status == "processing"
        assert db.get(ExportRequest, finished.id).status == "ready"

    def test_skips_exports_with_running_task(self, db, seeded):
        export = self._export(db, seeded, ExportStatus.PROCESSING.value, 3)
        running = MagicMock()
        ExportJobManager._running_jobs[str(export.id)] = running

        count = ExportJobManager.cleanup_stale_exports(db, stale_hours=2)

        assert count == 0
        db.expire_all()
        assert db.get(ExportRequest, export.id).status == "processing"

    def test_nothing_stale(self, db, seeded):
        assert ExportJobManager.cleanup_stale_exports(db) == 0
