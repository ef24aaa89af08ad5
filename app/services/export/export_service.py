# app/services/export/export_service.py
"""
Export service: the synchronous surface of the export lifecycle.

create_export validates and persists a request, then hands it to the job
manager; everything else reads or removes ExportRequest rows.

Errors raised here (ExportValidationError, AccessDenied, NotFound,
ConcurrencyConflict, ExportNotReady, ExportExpired) happen before any state
changes and are mapped to HTTP codes by the router.
"""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants import ExportLimits
from app.errors import (
    AccessDenied,
    ConcurrencyConflict,
    ExportExpired,
    ExportNotReady,
    NotFound,
)
from app.models import (
    IN_FLIGHT_EXPORT_STATUSES,
    LEGACY_COMPLETED_STATUS,
    ExportRequest,
    ExportFormat,
    ExportStatus,
    Project,
    ProjectRole,
    ProjectStatus,
    Subscription,
)
from app.services.analytics import AnalyticsEventType, track_event
from app.services.export.export_job_manager import ExportJobManager
from app.services.export.options import ExportOptions, validate_export_options
from app.storage.base import StorageProvider
from app.storage.factory import get_storage_provider
from app.utils.ids import parse_uuid
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Lookups
# -----------------------------------------------------------------------------


def get_project(db: Session, project_id) -> Project:
    project_uuid = parse_uuid(project_id)
    project = db.query(Project).filter(Project.id == project_uuid).first() if project_uuid else None
    if project is None:
        raise NotFound(f"Project {project_id} not found")
    return project


def ensure_project_member(db: Session, project_id, user_id) -> None:
    """Raise AccessDenied unless the user holds any role on the project."""
    user_uuid = parse_uuid(user_id)
    role = None
    if user_uuid is not None:
        role = (
            db.query(ProjectRole)
            .filter(ProjectRole.project_id == parse_uuid(project_id), ProjectRole.user_id == user_uuid)
            .first()
        )
    if role is None:
        raise AccessDenied(f"User {user_id} does not have access to project {project_id}")


def get_export(db: Session, export_id, user_id=None) -> ExportRequest:
    """
    Fetch an export request, optionally checking that user_id may see it.

    Raises:
        NotFound: unknown or malformed id
        AccessDenied: user_id given and not a project member
    """
    export_uuid = parse_uuid(export_id)
    export = db.query(ExportRequest).filter(ExportRequest.id == export_uuid).first() if export_uuid else None
    if export is None:
        raise NotFound(f"Export {export_id} not found")
    if user_id is not None:
        ensure_project_member(db, export.project_id, user_id)
    return export


# -----------------------------------------------------------------------------
# Create
# -----------------------------------------------------------------------------


def find_in_flight_export(db: Session, project_id, facilitator_id) -> ExportRequest | None:
    """
    In-flight export for this (project, facilitator) created within the window.

    Advisory only: two requests racing past this check can both be inserted.
    """
    window_start = utcnow() - timedelta(minutes=ExportLimits.CONCURRENCY_WINDOW_MINUTES)
    return (
        db.query(ExportRequest)
        .filter(
            ExportRequest.project_id == parse_uuid(project_id),
            ExportRequest.facilitator_id == parse_uuid(facilitator_id),
            ExportRequest.status.in_(IN_FLIGHT_EXPORT_STATUSES),
            ExportRequest.created_at >= window_start,
        )
        .order_by(ExportRequest.created_at.desc())
        .first()
    )


async def create_export(
    db: Session,
    project_id,
    facilitator_id,
    options: ExportOptions | dict[str, Any] | None,
    storage: StorageProvider | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> str:
    """
    Validate, persist a queued ExportRequest and start its pipeline.

    Returns the new export id as soon as the pipeline task is scheduled.

    Raises:
        ExportValidationError: options are invalid
        NotFound: project does not exist
        AccessDenied: facilitator has no role on the project
        ConcurrencyConflict: an in-flight export exists within the window
    """
    if not isinstance(options, ExportOptions):
        options = ExportOptions.from_dict(options)
    validate_export_options(options)

    project = get_project(db, project_id)
    ensure_project_member(db, project.id, facilitator_id)

    existing = find_in_flight_export(db, project.id, facilitator_id)
    if existing is not None:
        raise ConcurrencyConflict(
            f"Export {existing.id} is already {existing.status} for this project. "
            f"Wait for it to finish before requesting another."
        )

    export = ExportRequest(
        project_id=project.id,
        facilitator_id=parse_uuid(facilitator_id),
        status=ExportStatus.QUEUED.value,
        format=options.format.value,
        options=options.to_dict(),
        progress=0,
        current_step=None,
        current_step_index=0,
    )
    db.add(export)
    db.commit()
    db.refresh(export)

    export_id = str(export.id)
    logger.info(
        f"Created export {export_id} for project {project.id}",
        extra={
            "event": "export_created",
            "export_id": export_id,
            "project_id": str(project.id),
            "status": export.status,
        },
    )
    track_event(
        AnalyticsEventType.EXPORT_REQUESTED,
        user_id=str(facilitator_id),
        properties={
            "exportId": export_id,
            "projectId": str(project.id),
            "format": options.format.value,
            "options": options.to_dict(),
        },
    )

    ExportJobManager.start(export_id, session_factory=session_factory, storage=storage)
    return export_id


# -----------------------------------------------------------------------------
# Status
# -----------------------------------------------------------------------------


def _is_finished_successfully(status: str) -> bool:
    return status in (ExportStatus.READY.value, LEGACY_COMPLETED_STATUS)


def build_progress(export: ExportRequest) -> dict[str, Any]:
    """
    Progress for an export.

    Rows written by the pipeline carry their own step and percentage; older
    rows without one fall back to 100/Completed when ready, else 0/Queued.
    """
    if export.current_step:
        return {
            "progress": export.progress,
            "current_step": export.current_step,
            "current_step_index": export.current_step_index,
            "total_steps": export.total_steps,
            "started_at": export.started_at,
            "completed_at": export.completed_at,
            "error": export.error,
        }
    if _is_finished_successfully(export.status):
        return {
            "progress": 100,
            "current_step": "Completed",
            "current_step_index": export.total_steps,
            "total_steps": export.total_steps,
            "started_at": export.started_at,
            "completed_at": export.completed_at,
            "error": None,
        }
    return {
        "progress": 0,
        "current_step": "Queued",
        "current_step_index": 0,
        "total_steps": export.total_steps,
        "started_at": None,
        "completed_at": None,
        "error": export.error,
    }


def export_to_dict(export: ExportRequest) -> dict[str, Any]:
    return {
        "id": str(export.id),
        "project_id": str(export.project_id),
        "status": export.status,
        "format": export.format,
        "download_url": export.download_url,
        "expires_at": export.expires_at,
        "size_bytes": export.size_bytes,
        "error": export.error,
        "created_at": export.created_at,
        "updated_at": export.updated_at,
    }


def get_export_status(db: Session, export_id, user_id=None) -> dict[str, Any]:
    """Status, artifact link and progress. Reads only; repeated calls agree."""
    export = get_export(db, export_id, user_id=user_id)
    status = export_to_dict(export)
    status["progress"] = build_progress(export)
    return status


def list_project_exports(db: Session, project_id, user_id=None) -> list[dict[str, Any]]:
    """Exports for a project, newest first."""
    project = get_project(db, project_id)
    if user_id is not None:
        ensure_project_member(db, project.id, user_id)
    exports = (
        db.query(ExportRequest)
        .filter(ExportRequest.project_id == project.id)
        .order_by(ExportRequest.created_at.desc())
        .all()
    )
    return [export_to_dict(e) for e in exports]


# -----------------------------------------------------------------------------
# Download / delete
# -----------------------------------------------------------------------------


def open_export_download(
    db: Session,
    export_id,
    user_id=None,
    storage: StorageProvider | None = None,
) -> tuple[bytes, str, str]:
    """
    Bytes of a ready export.

    Returns:
        (content, content_type, file name)

    Raises:
        ExportNotReady: status is not ready
        ExportExpired: expires_at has passed
        NotFound: the blob is gone
    """
    export = get_export(db, export_id, user_id=user_id)

    if export.status == ExportStatus.EXPIRED.value:
        raise ExportExpired(f"Export {export_id} has expired")
    if export.status != ExportStatus.READY.value:
        raise ExportNotReady(f"Export {export_id} is {export.status}, not ready")
    if export.expires_at and export.expires_at < utcnow():
        raise ExportExpired(f"Export {export_id} expired at {export.expires_at.isoformat()}")

    storage = storage or get_storage_provider()
    obj = storage.download(export.storage_key) if export.storage_key else None
    if obj is None or not obj.exists:
        raise NotFound(f"Export file for {export_id} not found in storage")

    file_name = export.storage_key.rsplit("/", 1)[-1]
    content_type = obj.metadata.content_type.value if obj.metadata else "application/octet-stream"
    return obj.content, content_type, file_name


def delete_export(
    db: Session,
    export_id,
    user_id=None,
    storage: StorageProvider | None = None,
) -> None:
    """
    Remove an export's blob (best effort) and its row.

    A running pipeline is not cancelled; its next progress write finds no row
    and the task fails quietly.
    """
    export = get_export(db, export_id, user_id=user_id)

    if export.storage_key:
        storage = storage or get_storage_provider()
        try:
            storage.delete(export.storage_key)
        except Exception as e:
            logger.warning(
                f"Failed to delete export file {export.storage_key}: {e}",
                extra={"event": "export_blob_delete_failed", "export_id": str(export.id), "key": export.storage_key},
            )

    db.delete(export)
    db.commit()

    logger.info(
        f"Deleted export {export_id}",
        extra={"event": "export_deleted", "export_id": str(export_id)},
    )


# -----------------------------------------------------------------------------
# Analytics
# -----------------------------------------------------------------------------


CONTENT_TOGGLES = (
    "includeAudio",
    "includePhotos",
    "includeTranscripts",
    "includeInteractions",
    "includeChapterSummaries",
)


def popular_options(exports: list[ExportRequest]) -> dict[str, int]:
    """Percentage of exports that had each content toggle on. Missing toggles count as on."""
    if not exports:
        return {toggle: 0 for toggle in CONTENT_TOGGLES}
    return {
        toggle: int(100 * sum(1 for e in exports if (e.options or {}).get(toggle) is not False) / len(exports) + 0.5)
        for toggle in CONTENT_TOGGLES
    }


def get_export_analytics(db: Session, project_id, user_id=None) -> dict[str, Any]:
    """Counts by format and by month, average artifact size and toggle popularity."""
    project = get_project(db, project_id)
    if user_id is not None:
        ensure_project_member(db, project.id, user_id)

    exports = db.query(ExportRequest).filter(ExportRequest.project_id == project.id).all()

    by_format: dict[str, int] = defaultdict(int)
    by_month: dict[str, int] = defaultdict(int)
    sizes = []
    for export in exports:
        by_format[export.format] += 1
        by_month[export.created_at.strftime("%Y-%m")] += 1
        if export.size_bytes:
            sizes.append(export.size_bytes)

    return {
        "total_exports": len(exports),
        "by_format": dict(by_format),
        "by_month": dict(sorted(by_month.items())),
        "average_size": int(sum(sizes) / len(sizes)) if sizes else 0,
        "most_popular_options": popular_options(exports),
    }


# -----------------------------------------------------------------------------
# Options
# -----------------------------------------------------------------------------


def get_export_options(db: Session, project_id, user_id) -> dict[str, Any]:
    """What a member may request for this project, and the limits that apply."""
    project = get_project(db, project_id)
    ensure_project_member(db, project.id, user_id)

    subscription = (
        db.query(Subscription)
        .filter(Subscription.project_id == project.id)
        .order_by(Subscription.created_at.desc())
        .first()
    )

    return {
        "formats": [f.value for f in ExportFormat],
        "include_options": {
            "audio": True,
            "photos": True,
            "transcripts": True,
            "interactions": True,
            "chapter_summaries": True,
            "metadata": True,
        },
        "filter_options": {"date_range": True, "chapters": True},
        "project_status": {
            "is_archived": project.status == ProjectStatus.ARCHIVED.value,
            "is_active": project.status == ProjectStatus.ACTIVE.value,
            "subscription_expires_at": subscription.current_period_end if subscription else None,
        },
        "limitations": {
            "max_chapters": ExportLimits.MAX_CHAPTERS,
            "max_date_range_months": ExportLimits.MAX_DATE_RANGE_MONTHS,
            "max_custom_name_length": ExportLimits.MAX_CUSTOM_NAME_CHARS,
            "download_expiry_days": get_settings().EXPORT_EXPIRY_DAYS,
        },
    }
