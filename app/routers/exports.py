# app/routers/exports.py
"""
Export endpoints.

POST   /v1/projects/{project_id}/exports            - Request an export (202)
GET    /v1/projects/{project_id}/exports            - List a project's exports
GET    /v1/projects/{project_id}/exports/options    - Formats, toggles and limits
GET    /v1/projects/{project_id}/exports/analytics  - Export counts and sizes
GET    /v1/exports/{export_id}                      - Status and progress
GET    /v1/exports/{export_id}/download             - Artifact bytes (ready only)
DELETE /v1/exports/{export_id}                      - Delete export and its file
"""

import logging
from typing import Callable

from cachetools import TTLCache
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from app.auth import get_current_user_id
from app.database import get_db, get_session_factory
from app.errors import ExportValidationError, LifecycleError
from app.schemas.exports import (
    CreateExportResponse,
    ExportAnalyticsResponse,
    ExportOptionsRequest,
    ExportOptionsResponse,
    ExportStatusResponse,
    ExportSummaryResponse,
)
from app.services.export import export_service
from app.utils.ids import parse_uuid
from app.storage.factory import get_storage_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["exports"])

# In-memory cache for export analytics (5 min TTL, max 100 entries)
_analytics_cache: TTLCache = TTLCache(maxsize=100, ttl=300)


def invalidate_export_analytics_cache(project_id: str | None = None) -> None:
    """Clear cached analytics for one project, or for all projects."""
    if project_id is None:
        _analytics_cache.clear()
    else:
        project_uuid = parse_uuid(project_id)
        _analytics_cache.pop(str(project_uuid) if project_uuid else str(project_id), None)


def _to_http(e: LifecycleError) -> HTTPException:
    if isinstance(e, ExportValidationError):
        return HTTPException(status_code=e.status_code, detail={"message": e.message, "problems": e.problems})
    return HTTPException(status_code=e.status_code, detail=e.message)


# -----------------------------------------------------------------------------
# Project-scoped
# -----------------------------------------------------------------------------


@router.post(
    "/projects/{project_id}/exports",
    response_model=CreateExportResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_project_export(
    project_id: str,
    payload: ExportOptionsRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> CreateExportResponse:
    """
    Request an export of a project.

    Returns immediately with the export id; poll GET /v1/exports/{id}
    for progress.
    """
    try:
        export_id = await export_service.create_export(
            db,
            project_id,
            user_id,
            payload.to_options_dict(),
            storage=get_storage_provider(),
            session_factory=session_factory,
        )
    except LifecycleError as e:
        raise _to_http(e)

    invalidate_export_analytics_cache(project_id)
    return CreateExportResponse(export_id=export_id)


@router.get("/projects/{project_id}/exports", response_model=list[ExportSummaryResponse])
def list_project_exports(
    project_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> list[ExportSummaryResponse]:
    """List a project's exports, newest first."""
    try:
        exports = export_service.list_project_exports(db, project_id, user_id=user_id)
    except LifecycleError as e:
        raise _to_http(e)
    return [ExportSummaryResponse(**e) for e in exports]


@router.get("/projects/{project_id}/exports/options", response_model=ExportOptionsResponse)
def get_project_export_options(
    project_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> ExportOptionsResponse:
    """Formats, content toggles and limits a member can use for this project."""
    try:
        return ExportOptionsResponse(**export_service.get_export_options(db, project_id, user_id))
    except LifecycleError as e:
        raise _to_http(e)


@router.get("/projects/{project_id}/exports/analytics", response_model=ExportAnalyticsResponse)
def get_project_export_analytics(
    project_id: str,
    response: Response,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> ExportAnalyticsResponse:
    """Export counts by format and month, and average size."""
    try:
        project = export_service.get_project(db, project_id)
        export_service.ensure_project_member(db, project.id, user_id)
    except LifecycleError as e:
        raise _to_http(e)

    # Keyed on the canonical id so invalidation matches any spelling of the path
    cache_key = str(project.id)
    cached = _analytics_cache.get(cache_key)
    if cached is not None:
        response.headers["X-Cache"] = "HIT"
        return cached

    response.headers["X-Cache"] = "MISS"
    result = ExportAnalyticsResponse(**export_service.get_export_analytics(db, project.id))
    _analytics_cache[cache_key] = result
    return result


# -----------------------------------------------------------------------------
# Export-scoped
# -----------------------------------------------------------------------------


@router.get("/exports/{export_id}", response_model=ExportStatusResponse)
def get_export_status(
    export_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> ExportStatusResponse:
    """Status, download link and progress of one export."""
    try:
        return ExportStatusResponse(**export_service.get_export_status(db, export_id, user_id=user_id))
    except LifecycleError as e:
        raise _to_http(e)


@router.get("/exports/{export_id}/download")
def download_export(
    export_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> Response:
    """
    Artifact bytes for a ready export.

    409 if the export is not ready, 410 once it has expired.
    """
    try:
        content, content_type, file_name = export_service.open_export_download(
            db, export_id, user_id=user_id, storage=get_storage_provider()
        )
    except LifecycleError as e:
        raise _to_http(e)

    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@router.delete("/exports/{export_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_export(
    export_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> Response:
    """Delete an export and, best effort, its stored file."""
    try:
        export = export_service.get_export(db, export_id, user_id=user_id)
        project_id = str(export.project_id)
        export_service.delete_export(db, export_id, storage=get_storage_provider())
    except LifecycleError as e:
        raise _to_http(e)

    invalidate_export_analytics_cache(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
