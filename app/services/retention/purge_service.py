# app/services/retention/purge_service.py
"""
Purge service for cascade-safe permanent deletion of a project.

Deletion order respects foreign keys:
    interactions -> chapter summaries -> stories (+ blobs)
    -> export requests (+ blobs) -> roles -> subscriptions
    -> invitations -> project

Everything runs in one transaction. Any failure rolls the rows back and
raises TransactionFailure; blobs deleted before the failure stay deleted.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.errors import NotFound, TransactionFailure
from app.models import (
    ChapterSummary,
    ExportRequest,
    Interaction,
    Invitation,
    Project,
    ProjectRole,
    Story,
    Subscription,
)
from app.storage.base import StorageProvider
from app.storage.keys import calculate_project_storage_usage, project_prefixes
from app.utils.ids import parse_uuid

logger = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    """Result of a project purge."""

    project_id: str
    storage_freed: int = 0
    blobs_deleted: int = 0
    records_deleted: dict[str, int] = field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return sum(self.records_deleted.values())


def _invalidate_caches():
    """Invalidate export analytics cache after deletion."""
    try:
        from app.routers.exports import invalidate_export_analytics_cache

        invalidate_export_analytics_cache()
        logger.debug("Export analytics cache invalidated")
    except Exception as e:
        logger.warning(f"Failed to invalidate export analytics cache: {e}")


def _delete_blob(storage: StorageProvider, key: str | None) -> bool:
    """Delete one blob. Backend errors propagate so the caller can roll back."""
    if not key:
        return False
    return storage.delete(key)


def delete_project_completely(db: Session, storage: StorageProvider, project_id) -> PurgeResult:
    """
    Permanently delete a project and everything that references it.

    Args:
        db: Database session (committed on success, rolled back on failure)
        storage: Blob store holding the project's media and exports
        project_id: Project UUID

    Returns:
        PurgeResult with per-table counts and bytes freed

    Raises:
        NotFound: project does not exist
        TransactionFailure: any step failed; no rows were deleted
    """
    project_uuid = parse_uuid(project_id)
    project = db.query(Project).filter(Project.id == project_uuid).first() if project_uuid else None
    if project is None:
        raise NotFound(f"Project {project_id} not found")

    result = PurgeResult(project_id=str(project.id))
    storage_before = calculate_project_storage_usage(storage, project.id)

    try:
        story_ids = [row.id for row in db.query(Story.id).filter(Story.project_id == project.id)]

        # 1. Interactions (by story)
        if story_ids:
            result.records_deleted["interactions"] = (
                db.query(Interaction)
                .filter(Interaction.story_id.in_(story_ids))
                .delete(synchronize_session=False)
            )
        else:
            result.records_deleted["interactions"] = 0

        # 2. Chapter summaries
        result.records_deleted["chapter_summaries"] = (
            db.query(ChapterSummary)
            .filter(ChapterSummary.project_id == project.id)
            .delete(synchronize_session=False)
        )

        # 3. Stories: blobs first, then rows
        for story in db.query(Story).filter(Story.project_id == project.id).all():
            for key in (story.audio_uri, story.photo_uri):
                if _delete_blob(storage, key):
                    result.blobs_deleted += 1
        result.records_deleted["stories"] = (
            db.query(Story).filter(Story.project_id == project.id).delete(synchronize_session=False)
        )

        # 4. Export requests: blobs first, then rows
        for export in db.query(ExportRequest).filter(ExportRequest.project_id == project.id).all():
            if _delete_blob(storage, export.storage_key):
                result.blobs_deleted += 1
        result.records_deleted["export_requests"] = (
            db.query(ExportRequest)
            .filter(ExportRequest.project_id == project.id)
            .delete(synchronize_session=False)
        )

        # 5. Memberships, billing, invitations
        result.records_deleted["project_roles"] = (
            db.query(ProjectRole).filter(ProjectRole.project_id == project.id).delete(synchronize_session=False)
        )
        result.records_deleted["subscriptions"] = (
            db.query(Subscription).filter(Subscription.project_id == project.id).delete(synchronize_session=False)
        )
        result.records_deleted["invitations"] = (
            db.query(Invitation).filter(Invitation.project_id == project.id).delete(synchronize_session=False)
        )

        # 6. The project itself
        result.records_deleted["projects"] = (
            db.query(Project).filter(Project.id == project.id).delete(synchronize_session=False)
        )

        db.commit()

    except Exception as e:
        db.rollback()
        logger.error(
            f"Project purge failed for {project_id}, rolled back: {e}",
            extra={"event": "project_purge_failed", "project_id": str(project_id)},
        )
        raise TransactionFailure(f"Failed to delete project {project_id}: {e}", project_id=str(project_id)) from e

    # Orphans under the project's prefixes (e.g. blobs never linked to a row)
    for prefix in project_prefixes(result.project_id):
        try:
            result.blobs_deleted += storage.delete_all(prefix)
        except Exception as e:
            logger.warning(f"Failed to clear leftover blobs under {prefix}: {e}")

    result.storage_freed = storage_before
    _invalidate_caches()

    logger.info(
        f"Purged project {result.project_id}: {result.total_records} records, "
        f"{result.blobs_deleted} blobs, {result.storage_freed} bytes",
        extra={
            "event": "project_purged",
            "project_id": result.project_id,
            "items_deleted": result.total_records,
            "storage_freed": result.storage_freed,
        },
    )
    return result
