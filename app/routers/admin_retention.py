# app/routers/admin_retention.py
"""
Admin endpoints for retention policy management.

GET  /v1/admin/retention/policies              - Configured policies
GET  /v1/admin/retention/status                - Policies and next scheduled run
POST /v1/admin/retention/run                   - Run retention now
POST /v1/admin/retention/expire-exports        - Expire ready exports past their expiry
POST /v1/admin/retention/projects/{id}/purge   - Permanently delete one project
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.auth import require_admin_key
from app.database import get_db
from app.errors import LifecycleError
from app.schemas.retention import (
    PolicyResponse,
    ProjectPurgeRequest,
    ProjectPurgeResponse,
    RetentionReportResponse,
    RetentionRunRequest,
    RetentionRunResponse,
    RetentionStatusResponse,
    SweepResponse,
)
from app.services.retention import (
    delete_project_completely,
    execute_all_policies,
    execute_policy,
    expire_ready_exports,
    get_retention_policies,
    get_retention_policy,
    get_retention_status,
)
from app.storage.factory import get_storage_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin/retention", tags=["admin-retention"])


@router.get("/policies", response_model=list[PolicyResponse])
def list_policies(
    _: None = Depends(require_admin_key),
) -> list[PolicyResponse]:
    """List all configured retention policies."""
    return [PolicyResponse(**p.to_dict()) for p in get_retention_policies()]


@router.get("/status", response_model=RetentionStatusResponse)
def retention_status(
    _: None = Depends(require_admin_key),
) -> RetentionStatusResponse:
    """Configured policies and when the daily run is next due."""
    return RetentionStatusResponse(**get_retention_status())


@router.post("/run", response_model=RetentionRunResponse)
def run_retention(
    request: RetentionRunRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> RetentionRunResponse:
    """
    Run retention now.

    Expires overdue exports first (unless disabled), then runs either the
    named policy or every enabled policy.
    """
    storage = get_storage_provider()

    if request.policy:
        policy = get_retention_policy(request.policy)
        if not policy:
            raise HTTPException(status_code=404, detail=f"Retention policy '{request.policy}' not found")
        policies = [policy]
    else:
        policies = None

    expired = expire_ready_exports(db, storage=storage) if request.expire_exports else None

    if policies:
        reports = [execute_policy(db, p, storage=storage) for p in policies]
    else:
        reports = execute_all_policies(db, storage=storage)

    logger.info(
        f"Manual retention run: {len(reports)} policies",
        extra={"event": "retention_manual_run", "count": len(reports)},
    )

    return RetentionRunResponse(
        success=all(r.success for r in reports) and (expired is None or not expired.errors),
        expired_exports=SweepResponse(**expired.to_dict()) if expired else None,
        reports=[RetentionReportResponse(**r.to_dict()) for r in reports],
    )


@router.post("/expire-exports", response_model=SweepResponse)
def expire_exports(
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> SweepResponse:
    """Move ready exports past their expiry to expired and delete their files."""
    result = expire_ready_exports(db, storage=get_storage_provider())
    return SweepResponse(**result.to_dict())


@router.post("/projects/{project_id}/purge", response_model=ProjectPurgeResponse)
def purge_project(
    project_id: str,
    request: ProjectPurgeRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> ProjectPurgeResponse:
    """
    Permanently delete a project and everything that references it.

    Requires confirm=true. All-or-nothing: on failure nothing is deleted
    from the database.
    """
    if not request.confirm:
        raise HTTPException(
            status_code=400,
            detail="Project purge requires confirm=true",
        )

    try:
        result = delete_project_completely(db, get_storage_provider(), project_id)
    except LifecycleError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return ProjectPurgeResponse(
        project_id=result.project_id,
        storage_freed=result.storage_freed,
        blobs_deleted=result.blobs_deleted,
        records_deleted=result.records_deleted,
    )
