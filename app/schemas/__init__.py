# app/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.
"""

from app.schemas.exports import (
    CreateExportResponse,
    DateRangeRequest,
    ExportAnalyticsResponse,
    ExportLimitationsResponse,
    ExportOptionsRequest,
    ExportOptionsResponse,
    ExportProgressResponse,
    ExportStatusResponse,
    ExportSummaryResponse,
    FilterOptionsResponse,
    IncludeOptionsResponse,
    ProjectExportStatusResponse,
)
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

__all__ = [
    "DateRangeRequest",
    "ExportOptionsRequest",
    "CreateExportResponse",
    "ExportProgressResponse",
    "ExportSummaryResponse",
    "ExportStatusResponse",
    "ExportAnalyticsResponse",
    "IncludeOptionsResponse",
    "FilterOptionsResponse",
    "ProjectExportStatusResponse",
    "ExportLimitationsResponse",
    "ExportOptionsResponse",
    # Retention schemas
    "PolicyResponse",
    "RetentionStatusResponse",
    "RetentionReportResponse",
    "RetentionRunRequest",
    "SweepResponse",
    "RetentionRunResponse",
    "ProjectPurgeRequest",
    "ProjectPurgeResponse",
]
