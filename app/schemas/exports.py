# app/schemas/exports.py
"""
Schemas for export endpoints.

Wire format is camelCase; services work in snake_case and the aliases
bridge the two.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class DateRangeRequest(CamelModel):
    start_date: str = Field(..., description="ISO-8601 start (inclusive)")
    end_date: str = Field(..., description="ISO-8601 end (inclusive)")


class ExportOptionsRequest(CamelModel):
    """
    Export options. Omitted toggles default to true, format to archive.

    Values are checked by the export service so every problem is reported
    together with a 400.
    """

    include_audio: bool | None = None
    include_photos: bool | None = None
    include_transcripts: bool | None = None
    include_interactions: bool | None = None
    include_chapter_summaries: bool | None = None
    include_metadata: bool | None = None
    format: str | None = Field(None, description="archive|document (zip|json accepted)")
    date_range: DateRangeRequest | None = None
    chapters: list[str] | None = None
    custom_name: str | None = None
    notify_on_complete: bool | None = None

    def to_options_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class CreateExportResponse(CamelModel):
    export_id: str
    status: str = "queued"


class ExportProgressResponse(CamelModel):
    progress: int
    current_step: str
    current_step_index: int
    total_steps: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


class ExportSummaryResponse(CamelModel):
    id: str
    project_id: str
    status: str
    format: str
    download_url: str | None = None
    expires_at: datetime | None = None
    size_bytes: int | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ExportStatusResponse(ExportSummaryResponse):
    progress: ExportProgressResponse


class ExportAnalyticsResponse(CamelModel):
    total_exports: int
    by_format: dict[str, int] = Field(default_factory=dict)
    by_month: dict[str, int] = Field(default_factory=dict)
    average_size: int = 0
    most_popular_options: dict[str, int] = Field(default_factory=dict)


class IncludeOptionsResponse(CamelModel):
    audio: bool = True
    photos: bool = True
    transcripts: bool = True
    interactions: bool = True
    chapter_summaries: bool = True
    metadata: bool = True


class FilterOptionsResponse(CamelModel):
    date_range: bool = True
    chapters: bool = True


class ProjectExportStatusResponse(CamelModel):
    is_archived: bool
    is_active: bool
    subscription_expires_at: datetime | None = None


class ExportLimitationsResponse(CamelModel):
    max_chapters: int
    max_date_range_months: int
    max_custom_name_length: int
    download_expiry_days: int


class ExportOptionsResponse(CamelModel):
    formats: list[str]
    include_options: IncludeOptionsResponse
    filter_options: FilterOptionsResponse
    project_status: ProjectExportStatusResponse
    limitations: ExportLimitationsResponse
