# app/services/export/export_pipeline.py
"""
Export pipeline: the seven steps that turn a queued ExportRequest into a
stored, downloadable artifact.

Steps (progress written to the row before each one starts):
1. Initializing           0%   status -> processing
2. Validating access     10%   project must still exist
3. Collecting data       25%   stories, interactions, chapter summaries
4. Downloading media     40%   media is fetched lazily by the builder
5. Building export    60-80%   ArchiveBuilder, off the event loop
6. Uploading to storage  85%
7. Finalizing         95-100%  status -> ready, notify, analytics

Any exception marks the row failed and is re-raised as PipelineFailure for
the job manager to log. Nobody awaits the pipeline on behalf of the caller.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants import ExportDefaults
from app.errors import DownloadFailure, NotFound, PipelineFailure
from app.logging_config import export_id_var, log_export_step, log_storage_operation
from app.models import (
    ChapterSummary,
    ExportFormat,
    ExportRequest,
    ExportStatus,
    Interaction,
    Project,
    Story,
    User,
)
from app.services.analytics import AnalyticsEventType, track_event
from app.services.export.archive_builder import ArchiveBuilder, ExportArtifact, verify_export_artifact
from app.services.export.options import ExportOptions
from app.services.export.snapshots import (
    ChapterSummarySnapshot,
    ExportSnapshot,
    InteractionSnapshot,
    ProjectSnapshot,
    StorySnapshot,
)
from app.storage.base import ContentType, StorageProvider
from app.storage.factory import get_storage_provider
from app.storage.keys import calculate_project_storage_usage, export_key
from app.utils.file_names import sanitize_file_name
from app.utils.ids import parse_uuid
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

# Notification hook: (recipient, project_name, download_url, expires_at) -> result dict
Notifier = Callable[..., dict[str, Any]]


@dataclass(frozen=True)
class PipelineStep:
    index: int
    name: str
    progress: int


STEPS = (
    PipelineStep(1, "Initializing", 0),
    PipelineStep(2, "Validating access", 10),
    PipelineStep(3, "Collecting data", 25),
    PipelineStep(4, "Downloading media", 40),
    PipelineStep(5, "Building export", 60),
    PipelineStep(6, "Uploading to storage", 85),
    PipelineStep(7, "Finalizing", 95),
)

BUILD_PROGRESS_END = 80
BUILD_PROGRESS_STEP = 5  # minimum jump between persisted build updates


def build_export_file_name(export_id: str, options: ExportOptions) -> str:
    """`<sanitized custom name>-<id>.<ext>` or `archival-export-<id>.<ext>`."""
    if options.custom_name:
        stem = f"{sanitize_file_name(options.custom_name)}-{export_id}"
    else:
        stem = f"{ExportDefaults.DEFAULT_NAME_PREFIX}-{export_id}"
    return f"{stem}.{options.format.extension}"


def download_path(export_id) -> str:
    return ExportDefaults.DOWNLOAD_PATH_TEMPLATE.format(export_id=export_id)


@dataclass
class PipelineResult:
    """What a successful run produced."""

    export_id: str
    storage_key: str
    size_bytes: int
    file_count: int
    duration_ms: int
    skipped_files: list[str] = field(default_factory=list)


class ExportPipeline:
    """
    Runs one export request through the seven steps.

    The pipeline owns its session for the whole run; builder work and blob
    I/O go through the default executor so the event loop stays free.
    """

    def __init__(
        self,
        export_id: str,
        db: Session,
        storage: StorageProvider | None = None,
        notifier: Notifier | None = None,
    ):
        self.export_id = str(export_id)
        self.db = db
        self.storage = storage or get_storage_provider()
        self.settings = get_settings()
        self._notifier = notifier

        self.options: ExportOptions | None = None
        self.snapshot: ExportSnapshot | None = None
        self.artifact: ExportArtifact | None = None
        self.storage_key: str | None = None
        self.total_size = 0
        self.facilitator_id: str | None = None
        self._current_step: PipelineStep | None = None
        self._build_progress = STEPS[4].progress

    # -------------------------------------------------------------------------
    # Persistence helpers
    # -------------------------------------------------------------------------

    def _load_request(self) -> ExportRequest:
        export = self.db.query(ExportRequest).filter(ExportRequest.id == parse_uuid(self.export_id)).first()
        if export is None:
            raise NotFound(f"Export {self.export_id} not found")
        return export

    def _record_progress(self, step: PipelineStep, progress: int | None = None, **fields) -> None:
        """Persist and log the current step and percentage."""
        export = self._load_request()
        export.current_step = step.name
        export.current_step_index = step.index
        export.total_steps = ExportDefaults.TOTAL_STEPS
        export.progress = step.progress if progress is None else progress
        for name, value in fields.items():
            setattr(export, name, value)
        self.db.commit()

        logger.info(
            f"Export {self.export_id} progress {export.progress}%: {step.name}",
            extra={
                "event": "export_progress",
                "export_id": self.export_id,
                "progress": export.progress,
                "status": export.status,
            },
        )

    def _record_build_progress(self, progress: int) -> None:
        if progress <= self._build_progress:
            return
        self._build_progress = progress
        try:
            self._record_progress(STEPS[4], progress=progress)
        except Exception as e:
            logger.warning(f"Failed to persist build progress for export {self.export_id}: {e}")

    def _mark_failed(self, error: Exception) -> None:
        """Persist status=failed with the error message. Never raises."""
        try:
            self.db.rollback()
            export = self._load_request()
            export.status = ExportStatus.FAILED.value
            export.error = str(error) or type(error).__name__
            export.completed_at = utcnow()
            export.download_url = None
            export.expires_at = None
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Failed to mark export {self.export_id} as failed: {e}")

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(self) -> PipelineResult:
        """Run every step in order. Raises PipelineFailure after persisting failed status."""
        started = time.time()
        export_id_var.set(self.export_id)
        loop = asyncio.get_running_loop()

        logger.info(
            f"Export pipeline starting for export {self.export_id}",
            extra={"event": "export_pipeline_start", "export_id": self.export_id},
        )

        try:
            with self._step(STEPS[0]):
                self._initialize()

            with self._step(STEPS[1]):
                project = self._validate_access()

            with self._step(STEPS[2]):
                self.snapshot = self._collect_data(project)
                self.total_size = await loop.run_in_executor(
                    None, lambda: calculate_project_storage_usage(self.storage, project.id)
                )

            with self._step(STEPS[3]):
                # Media is fetched per file inside the builder
                pass

            with self._step(STEPS[4]):
                self.artifact = await loop.run_in_executor(None, lambda: self._build(loop))
                problems = verify_export_artifact(self.artifact.content, self.artifact.format, self.options)
                if problems:
                    raise PipelineFailure(
                        f"Built artifact failed verification: {'; '.join(problems)}",
                        step=STEPS[4].name,
                    )
                self._record_progress(STEPS[4], progress=BUILD_PROGRESS_END)

            with self._step(STEPS[5]):
                await loop.run_in_executor(None, self._upload)

            with self._step(STEPS[6]):
                await self._finalize(started, loop)

        except Exception as e:
            step_name = self._current_step.name if self._current_step else None
            self._mark_failed(e)
            track_event(
                AnalyticsEventType.EXPORT_FAILED,
                properties={"exportId": self.export_id, "step": step_name, "error": str(e)},
            )
            logger.error(
                f"Export {self.export_id} failed at step {step_name}: {e}",
                extra={"event": "export_failed", "export_id": self.export_id, "status": ExportStatus.FAILED.value},
            )
            if isinstance(e, PipelineFailure):
                raise
            raise PipelineFailure(str(e), step=step_name) from e

        duration_ms = int((time.time() - started) * 1000)
        return PipelineResult(
            export_id=self.export_id,
            storage_key=self.storage_key,
            size_bytes=self.artifact.size_bytes,
            file_count=self.artifact.file_count,
            duration_ms=duration_ms,
            skipped_files=list(self.artifact.skipped_files),
        )

    def _step(self, step: PipelineStep):
        """Record progress for a step, then time it."""
        self._current_step = step
        if step.index > 1:
            self._record_progress(step)
        return log_export_step(step.name, step.index, export_id=self.export_id)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _initialize(self) -> None:
        export = self._load_request()
        self.options = ExportOptions.from_dict(export.options)
        self.options.format = ExportFormat.parse(export.format)
        self.facilitator_id = str(export.facilitator_id)
        self._record_progress(
            STEPS[0],
            status=ExportStatus.PROCESSING.value,
            started_at=utcnow(),
            error=None,
        )

    def _validate_access(self) -> Project:
        export = self._load_request()
        project = self.db.query(Project).filter(Project.id == export.project_id).first()
        if project is None:
            raise NotFound(f"Project {export.project_id} not found")
        return project

    def _collect_data(self, project: Project) -> ExportSnapshot:
        options = self.options
        date_range = options.date_range

        query = self.db.query(Story).filter(Story.project_id == project.id)
        if date_range:
            query = query.filter(Story.created_at >= date_range.start, Story.created_at <= date_range.end)
        if options.chapters:
            chapter_ids = [cid for cid in (parse_uuid(c) for c in options.chapters) if cid is not None]
            query = query.filter(Story.chapter_id.in_(chapter_ids))
        stories = query.order_by(Story.created_at.asc()).all()

        interactions = []
        story_ids = [s.id for s in stories]
        if options.include_interactions and story_ids:
            iq = self.db.query(Interaction).filter(Interaction.story_id.in_(story_ids))
            if date_range:
                iq = iq.filter(
                    Interaction.created_at >= date_range.start,
                    Interaction.created_at <= date_range.end,
                )
            interactions = iq.order_by(Interaction.created_at.asc()).all()

        summaries = []
        if options.include_chapter_summaries:
            sq = self.db.query(ChapterSummary).filter(ChapterSummary.project_id == project.id)
            if options.chapters:
                chapter_ids = [cid for cid in (parse_uuid(c) for c in options.chapters) if cid is not None]
                sq = sq.filter(ChapterSummary.chapter_id.in_(chapter_ids))
            summaries = sq.order_by(ChapterSummary.created_at.asc()).all()

        snapshot = ExportSnapshot(
            project=ProjectSnapshot.from_model(project),
            stories=[StorySnapshot.from_model(s) for s in stories],
            interactions=[InteractionSnapshot.from_model(i) for i in interactions],
            chapter_summaries=[ChapterSummarySnapshot.from_model(s) for s in summaries],
        )

        logger.info(
            f"Collected {len(snapshot.stories)} stories, {len(snapshot.interactions)} interactions, "
            f"{len(snapshot.chapter_summaries)} chapter summaries for export {self.export_id}",
            extra={"event": "export_data_collected", "export_id": self.export_id, "project_id": str(project.id)},
        )
        return snapshot

    def _fetch_media(self, uri: str) -> bytes | None:
        """Runs on the builder thread."""
        try:
            with log_storage_operation("download", uri) as metrics:
                obj = self.storage.download(uri)
                if obj is None or not obj.exists:
                    return None
                metrics["size_bytes"] = len(obj.content)
                return obj.content
        except Exception as e:
            raise DownloadFailure(f"Failed to download {uri}: {e}") from e

    def _build(self, loop: asyncio.AbstractEventLoop) -> ExportArtifact:
        """Runs on the builder thread; progress updates hop back to the loop thread."""
        span = BUILD_PROGRESS_END - STEPS[4].progress
        last_scheduled = [STEPS[4].progress]

        def on_progress(fraction: float) -> None:
            progress = STEPS[4].progress + int(fraction * span)
            if progress - last_scheduled[0] >= BUILD_PROGRESS_STEP:
                last_scheduled[0] = progress
                loop.call_soon_threadsafe(self._record_build_progress, progress)

        builder = ArchiveBuilder(
            self.snapshot,
            self.options,
            export_id=self.export_id,
            exported_by=self.facilitator_id,
            total_size=self.total_size,
            fetch_media=self._fetch_media,
            on_progress=on_progress,
        )
        return builder.build()

    def _upload(self) -> None:
        """Runs on the executor; no session access here."""
        key = export_key(self.snapshot.project.id, build_export_file_name(self.export_id, self.options))
        artifact = self.artifact
        with log_storage_operation("upload", key) as metrics:
            self.storage.upload(
                key,
                artifact.content,
                content_type=ContentType.from_value(artifact.content_type),
                expires_days=self.settings.EXPORT_EXPIRY_DAYS,
                metadata={"export_id": self.export_id, "format": artifact.format.value},
            )
            metrics["size_bytes"] = artifact.size_bytes
        self.storage_key = key

    async def _finalize(self, started: float, loop: asyncio.AbstractEventLoop) -> None:
        now = utcnow()
        expires_at = now + timedelta(days=self.settings.EXPORT_EXPIRY_DAYS)
        url = download_path(self.export_id)

        self._record_progress(
            STEPS[6],
            progress=100,
            status=ExportStatus.READY.value,
            storage_key=self.storage_key,
            download_url=url,
            expires_at=expires_at,
            size_bytes=self.artifact.size_bytes,
            completed_at=now,
        )
        export = self._load_request()

        if self.options.notify_on_complete:
            await self._notify(export, url, expires_at, loop)

        duration_ms = int((time.time() - started) * 1000)
        track_event(
            AnalyticsEventType.EXPORT_COMPLETED,
            user_id=str(export.facilitator_id),
            properties={
                "exportId": self.export_id,
                "projectId": str(export.project_id),
                "format": self.artifact.format.value,
                "sizeBytes": self.artifact.size_bytes,
                "durationMs": duration_ms,
                "storyCount": self.artifact.story_count,
                "interactionCount": self.artifact.interaction_count,
                "fileCount": self.artifact.file_count,
            },
        )
        logger.info(
            f"Export {self.export_id} ready: {self.artifact.size_bytes} bytes in {duration_ms}ms",
            extra={
                "event": "export_ready",
                "export_id": self.export_id,
                "project_id": str(export.project_id),
                "size_bytes": self.artifact.size_bytes,
                "duration_ms": duration_ms,
                "status": ExportStatus.READY.value,
            },
        )

    async def _notify(self, export: ExportRequest, url: str, expires_at, loop: asyncio.AbstractEventLoop) -> None:
        """Tell the requester the export is ready. Failures are logged only."""
        facilitator = self.db.query(User).filter(User.id == export.facilitator_id).first()
        recipient = facilitator.email if facilitator else None
        try:
            notifier = self._notifier
            if notifier is None:
                from app.services.email_service import EmailService

                notifier = EmailService().send_export_ready
            # The mail provider call blocks; keep it off the event loop
            result = await loop.run_in_executor(
                None,
                functools.partial(
                    notifier,
                    recipient=recipient,
                    project_name=self.snapshot.project.name,
                    download_url=url,
                    expires_at=expires_at,
                ),
            )
            logger.info(
                f"Export {self.export_id} notification {result.get('status')}",
                extra={"event": "export_notification", "export_id": self.export_id, "status": result.get("status")},
            )
        except Exception as e:
            logger.error(f"Failed to notify requester of export {self.export_id}: {e}")
