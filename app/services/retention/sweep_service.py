# app/services/retention/sweep_service.py
"""
Retention sweeps: apply policies to the data they name.

Two failure policies, kept distinct:
- Per-row sweeps (stories, interactions, chapter summaries, export requests,
  temp files) commit one candidate at a time; a failing candidate is rolled
  back, recorded in errors, and the sweep moves on.
- The project sweep hands each project to delete_project_completely, which
  is all-or-nothing.

Runs are sequential: policies, then data types, then candidates.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.constants import StoragePrefixes
from app.logging_config import retention_policy_context
from app.models import (
    TERMINAL_EXPORT_STATUSES,
    ChapterSummary,
    ExportRequest,
    ExportStatus,
    Interaction,
    Project,
    ProjectStatus,
    Story,
)
from app.services.analytics import AnalyticsEventType, clear_events_before, track_event
from app.services.retention.policy_service import (
    DataType,
    RetentionPolicy,
    get_retention_policies,
    validate_policy,
)
from app.services.retention.purge_service import delete_project_completely
from app.storage.base import StorageProvider
from app.storage.factory import get_storage_provider
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts from one sweep."""

    items_processed: int = 0
    items_deleted: int = 0
    storage_freed: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "SweepResult") -> None:
        self.items_processed += other.items_processed
        self.items_deleted += other.items_deleted
        self.storage_freed += other.storage_freed
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items_processed": self.items_processed,
            "items_deleted": self.items_deleted,
            "storage_freed": self.storage_freed,
            "errors": list(self.errors),
        }


@dataclass
class RetentionReport:
    """Result of running one policy. Built once, never mutated after return."""

    policy: RetentionPolicy
    executed_at: datetime
    items_processed: int = 0
    items_deleted: int = 0
    storage_freed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy": self.policy.to_dict(),
            "executed_at": self.executed_at,
            "items_processed": self.items_processed,
            "items_deleted": self.items_deleted,
            "storage_freed": self.storage_freed,
            "errors": list(self.errors),
        }


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _scoped_statuses(policy: RetentionPolicy) -> list[str]:
    """Project statuses a policy reaches."""
    statuses = []
    if policy.apply_to_archived:
        statuses.append(ProjectStatus.ARCHIVED.value)
    if policy.apply_to_active:
        statuses.append(ProjectStatus.ACTIVE.value)
    return statuses


def _blob_size(storage: StorageProvider, key: str | None) -> int:
    """Best-effort stored size; unknown counts as zero."""
    if not key:
        return 0
    try:
        return storage.get_size(key)
    except Exception as e:
        logger.warning(f"Failed to read size of {key}: {e}")
        return 0


def _delete_blobs(storage: StorageProvider, keys: list[str | None]) -> int:
    """Delete blobs for one candidate, returning bytes freed. Errors propagate."""
    freed = 0
    for key in keys:
        if not key:
            continue
        size = _blob_size(storage, key)
        if storage.delete(key):
            freed += size
    return freed


def _sweep_rows(
    db: Session,
    label: str,
    candidate_ids: list,
    delete_one: Callable[[Any], int],
) -> SweepResult:
    """
    Delete candidates one at a time.

    delete_one(id) deletes blobs and rows for one candidate and returns bytes
    freed. The row change is committed per candidate; a failure rolls back
    that candidate only.
    """
    result = SweepResult()
    for candidate_id in candidate_ids:
        result.items_processed += 1
        try:
            freed = delete_one(candidate_id)
            db.commit()
            result.items_deleted += 1
            result.storage_freed += freed
        except Exception as e:
            db.rollback()
            message = f"Failed to delete {label} {candidate_id}: {e}"
            result.errors.append(message)
            logger.error(message, extra={"event": "retention_item_failed", "data_type": label})
    return result


# -----------------------------------------------------------------------------
# Per-type sweeps
# -----------------------------------------------------------------------------


def sweep_stories(db: Session, storage: StorageProvider, policy: RetentionPolicy, cutoff: datetime) -> SweepResult:
    candidate_ids = [
        row.id
        for row in db.query(Story.id)
        .join(Project, Story.project_id == Project.id)
        .filter(Story.created_at < cutoff, Project.status.in_(_scoped_statuses(policy)))
    ]

    def delete_one(story_id) -> int:
        story = db.query(Story).filter(Story.id == story_id).first()
        if story is None:
            return 0
        freed = _delete_blobs(storage, [story.audio_uri, story.photo_uri])
        db.query(Interaction).filter(Interaction.story_id == story_id).delete(synchronize_session=False)
        db.delete(story)
        return freed

    return _sweep_rows(db, "story", candidate_ids, delete_one)


def sweep_interactions(
    db: Session, storage: StorageProvider, policy: RetentionPolicy, cutoff: datetime
) -> SweepResult:
    candidate_ids = [
        row.id
        for row in db.query(Interaction.id)
        .join(Story, Interaction.story_id == Story.id)
        .join(Project, Story.project_id == Project.id)
        .filter(Interaction.created_at < cutoff, Project.status.in_(_scoped_statuses(policy)))
    ]

    def delete_one(interaction_id) -> int:
        db.query(Interaction).filter(Interaction.id == interaction_id).delete(synchronize_session=False)
        return 0

    return _sweep_rows(db, "interaction", candidate_ids, delete_one)


def sweep_chapter_summaries(
    db: Session, storage: StorageProvider, policy: RetentionPolicy, cutoff: datetime
) -> SweepResult:
    candidate_ids = [
        row.id
        for row in db.query(ChapterSummary.id)
        .join(Project, ChapterSummary.project_id == Project.id)
        .filter(ChapterSummary.created_at < cutoff, Project.status.in_(_scoped_statuses(policy)))
    ]

    def delete_one(summary_id) -> int:
        db.query(ChapterSummary).filter(ChapterSummary.id == summary_id).delete(synchronize_session=False)
        return 0

    return _sweep_rows(db, "chapter summary", candidate_ids, delete_one)


def sweep_export_requests(
    db: Session, storage: StorageProvider, policy: RetentionPolicy, cutoff: datetime
) -> SweepResult:
    """Finished exports only; queued and processing requests are never swept."""
    candidate_ids = [
        row.id
        for row in db.query(ExportRequest.id)
        .join(Project, ExportRequest.project_id == Project.id)
        .filter(
            ExportRequest.created_at < cutoff,
            ExportRequest.status.in_(TERMINAL_EXPORT_STATUSES),
            Project.status.in_(_scoped_statuses(policy)),
        )
    ]

    def delete_one(export_id) -> int:
        export = db.query(ExportRequest).filter(ExportRequest.id == export_id).first()
        if export is None:
            return 0
        freed = _delete_blobs(storage, [export.storage_key])
        db.delete(export)
        return freed

    return _sweep_rows(db, "export request", candidate_ids, delete_one)


def sweep_temp_files(db: Session, storage: StorageProvider, policy: RetentionPolicy, cutoff: datetime) -> SweepResult:
    """Blob-only sweep of the temp/ prefix; project scope does not apply."""
    result = SweepResult()
    for obj in storage.list_older_than(StoragePrefixes.TEMP, cutoff):
        result.items_processed += 1
        try:
            if storage.delete(obj.key):
                result.items_deleted += 1
                result.storage_freed += obj.size_bytes
        except Exception as e:
            message = f"Failed to delete temp file {obj.key}: {e}"
            result.errors.append(message)
            logger.error(message, extra={"event": "retention_item_failed", "key": obj.key})
    return result


def sweep_analytics_events(
    db: Session, storage: StorageProvider, policy: RetentionPolicy, cutoff: datetime
) -> SweepResult:
    removed = clear_events_before(cutoff)
    return SweepResult(items_processed=removed, items_deleted=removed)


def sweep_projects(db: Session, storage: StorageProvider, policy: RetentionPolicy, cutoff: datetime) -> SweepResult:
    """
    Whole-project deletion through the atomic purge.

    Projects age from their last update (for archived projects, the moment
    they were archived).
    """
    result = SweepResult()
    candidate_ids = [
        row.id
        for row in db.query(Project.id).filter(
            Project.updated_at < cutoff,
            Project.status.in_(_scoped_statuses(policy)),
        )
    ]

    for project_id in candidate_ids:
        result.items_processed += 1
        try:
            purge = delete_project_completely(db, storage, project_id)
        except Exception as e:
            message = f"Failed to delete project {project_id}: {e}"
            result.errors.append(message)
            logger.error(message, extra={"event": "retention_item_failed", "project_id": str(project_id)})
            continue

        result.items_deleted += 1
        result.storage_freed += purge.storage_freed
        track_event(
            AnalyticsEventType.PROJECT_DELETED_BY_RETENTION,
            properties={
                "projectId": str(project_id),
                "policy": policy.name,
                "storageFreed": purge.storage_freed,
                "recordsDeleted": purge.records_deleted,
            },
        )

    return result


SWEEPS: dict[str, Callable[[Session, StorageProvider, RetentionPolicy, datetime], SweepResult]] = {
    DataType.PROJECTS.value: sweep_projects,
    DataType.STORIES.value: sweep_stories,
    DataType.INTERACTIONS.value: sweep_interactions,
    DataType.CHAPTER_SUMMARIES.value: sweep_chapter_summaries,
    DataType.EXPORT_REQUESTS.value: sweep_export_requests,
    DataType.TEMP_FILES.value: sweep_temp_files,
    DataType.ANALYTICS_EVENTS.value: sweep_analytics_events,
}


# -----------------------------------------------------------------------------
# Policy execution
# -----------------------------------------------------------------------------


def execute_policy(
    db: Session,
    policy: RetentionPolicy,
    storage: StorageProvider | None = None,
    now: datetime | None = None,
) -> RetentionReport:
    """
    Run one policy over each of its data types.

    Never raises: problems end up in the report's errors.
    """
    executed_at = now or utcnow()
    report = RetentionReport(policy=policy, executed_at=executed_at)

    problems = validate_policy(policy)
    if problems:
        report.errors.extend(f"Invalid policy: {p}" for p in problems)
        logger.error(f"Skipping invalid retention policy {policy.name}: {problems}")
        return report

    cutoff = policy.cutoff(executed_at)
    storage = storage or get_storage_provider()

    with retention_policy_context(policy.name):
        logger.info(
            f"Executing retention policy {policy.name} (cutoff {cutoff.isoformat()})",
            extra={"event": "retention_policy_start", "policy": policy.name},
        )

        total = SweepResult()
        for data_type in policy.data_types:
            try:
                swept = SWEEPS[data_type](db, storage, policy, cutoff)
            except Exception as e:
                db.rollback()
                swept = SweepResult(errors=[f"Failed to sweep {data_type}: {e}"])
                logger.exception(f"Retention sweep of {data_type} failed: {e}")

            logger.info(
                f"Swept {data_type}: {swept.items_deleted}/{swept.items_processed} deleted",
                extra={
                    "event": "retention_sweep_complete",
                    "data_type": data_type,
                    "items_processed": swept.items_processed,
                    "items_deleted": swept.items_deleted,
                    "storage_freed": swept.storage_freed,
                },
            )
            total.merge(swept)

        report.items_processed = total.items_processed
        report.items_deleted = total.items_deleted
        report.storage_freed = total.storage_freed
        report.errors = total.errors

        logger.info(
            f"Retention policy {policy.name} finished: {report.items_deleted} deleted, "
            f"{report.storage_freed} bytes freed, {len(report.errors)} errors",
            extra={
                "event": "retention_policy_complete",
                "policy": policy.name,
                "items_processed": report.items_processed,
                "items_deleted": report.items_deleted,
                "storage_freed": report.storage_freed,
            },
        )

    return report


def execute_all_policies(
    db: Session,
    storage: StorageProvider | None = None,
    now: datetime | None = None,
    policies: list[RetentionPolicy] | None = None,
) -> list[RetentionReport]:
    """Run every enabled policy in order. One policy failing does not stop the rest."""
    storage = storage or get_storage_provider()
    policies = get_retention_policies(enabled_only=True) if policies is None else [p for p in policies if p.enabled]

    reports = []
    for policy in policies:
        try:
            reports.append(execute_policy(db, policy, storage=storage, now=now))
        except Exception as e:
            logger.exception(f"Retention policy {policy.name} crashed: {e}")
            reports.append(RetentionReport(policy=policy, executed_at=now or utcnow(), errors=[str(e)]))
    return reports


# -----------------------------------------------------------------------------
# Export expiry
# -----------------------------------------------------------------------------


def expire_ready_exports(
    db: Session,
    storage: StorageProvider | None = None,
    now: datetime | None = None,
) -> SweepResult:
    """
    Move ready exports past their expires_at to expired.

    The blob is deleted and download_url/expires_at are cleared. storage_key
    is kept so a blob that could not be deleted is retried by the
    export-request sweep later.
    """
    now = now or utcnow()
    storage = storage or get_storage_provider()
    result = SweepResult()

    candidate_ids = [
        row.id
        for row in db.query(ExportRequest.id).filter(
            ExportRequest.status == ExportStatus.READY.value,
            ExportRequest.expires_at.isnot(None),
            ExportRequest.expires_at < now,
        )
    ]

    for export_id in candidate_ids:
        result.items_processed += 1
        export = db.query(ExportRequest).filter(ExportRequest.id == export_id).first()
        if export is None:
            continue

        try:
            result.storage_freed += _delete_blobs(storage, [export.storage_key])
        except Exception as e:
            message = f"Failed to delete expired export file {export.storage_key}: {e}"
            result.errors.append(message)
            logger.warning(message, extra={"event": "export_expiry_blob_failed", "export_id": str(export_id)})

        try:
            export.status = ExportStatus.EXPIRED.value
            export.download_url = None
            export.expires_at = None
            db.commit()
            result.items_deleted += 1
        except Exception as e:
            db.rollback()
            message = f"Failed to expire export {export_id}: {e}"
            result.errors.append(message)
            logger.error(message)

    if result.items_processed:
        logger.info(
            f"Expired {result.items_deleted} exports",
            extra={
                "event": "exports_expired",
                "items_processed": result.items_processed,
                "items_deleted": result.items_deleted,
                "storage_freed": result.storage_freed,
            },
        )
    return result
