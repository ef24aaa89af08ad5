# app/schemas/retention.py
"""
Schemas for admin retention endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class PolicyResponse(BaseModel):
    """Retention policy descriptor."""

    name: str
    description: str
    retention_period_days: int
    apply_to_archived: bool
    apply_to_active: bool
    data_types: list[str]
    enabled: bool


class RetentionStatusResponse(BaseModel):
    """Configured policies and next scheduled run."""

    policies: list[PolicyResponse]
    total_policies: int
    enabled_policies: int
    next_execution: datetime


class RetentionReportResponse(BaseModel):
    """Result of one policy run."""

    policy: PolicyResponse
    executed_at: datetime
    items_processed: int
    items_deleted: int
    storage_freed: int
    errors: list[str] = Field(default_factory=list)


class RetentionRunRequest(BaseModel):
    """Request to run retention now."""

    policy: str | None = Field(None, description="Run only this policy (default: all enabled)")
    expire_exports: bool = Field(True, description="Expire ready exports past their expiry first")


class SweepResponse(BaseModel):
    """Counts from a sweep."""

    items_processed: int
    items_deleted: int
    storage_freed: int
    errors: list[str] = Field(default_factory=list)


class RetentionRunResponse(BaseModel):
    """Response from a retention run."""

    success: bool
    expired_exports: SweepResponse | None = None
    reports: list[RetentionReportResponse] = Field(default_factory=list)


class ProjectPurgeRequest(BaseModel):
    """Request to permanently delete a project."""

    confirm: bool = Field(False, description="Required confirmation")


class ProjectPurgeResponse(BaseModel):
    """Result of a project purge."""

    project_id: str
    storage_freed: int
    blobs_deleted: int
    records_deleted: dict[str, int]
