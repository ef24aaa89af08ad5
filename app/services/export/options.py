# app/services/export/options.py
"""
Export options value object and validation.

Options are validated before anything is persisted; the validated object is
stored on the ExportRequest row (camelCase JSON) and replayed by the
background pipeline.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.constants import ExportLimits
from app.errors import ExportValidationError
from app.models import ExportFormat

CUSTOM_NAME_PATTERN = re.compile(r"^[A-Za-z0-9 _-]+$")

CONTENT_TOGGLES = (
    "include_audio",
    "include_photos",
    "include_transcripts",
    "include_interactions",
    "include_chapter_summaries",
)


def _to_naive_utc(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None) if value.tzinfo else value


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _to_naive_utc(datetime.fromisoformat(text))


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, str]:
        return {"startDate": self.start.isoformat() + "Z", "endDate": self.end.isoformat() + "Z"}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DateRange":
        start = data.get("startDate", data.get("start"))
        end = data.get("endDate", data.get("end"))
        if start is None or end is None:
            raise ExportValidationError("Date range requires both a start and an end date")
        try:
            return cls(start=_parse_datetime(start), end=_parse_datetime(end))
        except (TypeError, ValueError) as e:
            raise ExportValidationError(f"Invalid date range: {e}") from e


@dataclass
class ExportOptions:
    """What to include in an export and in which shape. Omitted toggles default to on."""

    include_audio: bool = True
    include_photos: bool = True
    include_transcripts: bool = True
    include_interactions: bool = True
    include_chapter_summaries: bool = True
    include_metadata: bool = True
    format: ExportFormat = ExportFormat.ARCHIVE
    date_range: DateRange | None = None
    chapters: list[str] | None = None
    custom_name: str | None = None
    notify_on_complete: bool = False
    extra_problems: list[str] = field(default_factory=list, repr=False, compare=False)

    @property
    def has_content(self) -> bool:
        return any(getattr(self, name) for name in CONTENT_TOGGLES)

    def to_dict(self) -> dict[str, Any]:
        """camelCase form stored on the row and embedded in manifests."""
        data: dict[str, Any] = {
            "includeAudio": self.include_audio,
            "includePhotos": self.include_photos,
            "includeTranscripts": self.include_transcripts,
            "includeInteractions": self.include_interactions,
            "includeChapterSummaries": self.include_chapter_summaries,
            "includeMetadata": self.include_metadata,
            "format": self.format.value,
            "dateRange": self.date_range.to_dict() if self.date_range else None,
            "chapters": list(self.chapters) if self.chapters else None,
            "customName": self.custom_name,
            "notifyOnComplete": self.notify_on_complete,
        }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExportOptions":
        """
        Build options from camelCase input.

        Unknown formats are recorded as problems rather than raised so that
        validate_export_options reports every issue at once.
        """
        data = data or {}
        problems: list[str] = []

        raw_format = data.get("format") or ExportFormat.ARCHIVE.value
        try:
            export_format = ExportFormat.parse(raw_format)
        except ValueError:
            export_format = ExportFormat.ARCHIVE
            problems.append(f"Invalid format: {raw_format}. Must be 'archive' or 'document'")

        date_range = None
        if data.get("dateRange"):
            try:
                date_range = DateRange.from_dict(data["dateRange"])
            except ExportValidationError as e:
                problems.append(e.message)

        chapters = data.get("chapters")
        return cls(
            include_audio=bool(data.get("includeAudio", True)),
            include_photos=bool(data.get("includePhotos", True)),
            include_transcripts=bool(data.get("includeTranscripts", True)),
            include_interactions=bool(data.get("includeInteractions", True)),
            include_chapter_summaries=bool(data.get("includeChapterSummaries", True)),
            include_metadata=bool(data.get("includeMetadata", True)),
            format=export_format,
            date_range=date_range,
            chapters=[str(c) for c in chapters] if chapters else None,
            custom_name=data.get("customName"),
            notify_on_complete=bool(data.get("notifyOnComplete", False)),
            extra_problems=problems,
        )


def collect_option_problems(options: ExportOptions) -> list[str]:
    """Every validation problem with the options, empty when valid."""
    problems = list(options.extra_problems)

    if not options.has_content:
        problems.append("At least one content type must be included")

    if options.custom_name is not None:
        if len(options.custom_name) > ExportLimits.MAX_CUSTOM_NAME_CHARS:
            problems.append(
                f"Custom name must be {ExportLimits.MAX_CUSTOM_NAME_CHARS} characters or fewer"
            )
        if not CUSTOM_NAME_PATTERN.match(options.custom_name):
            problems.append("Custom name may only contain letters, numbers, spaces, hyphens and underscores")

    if options.chapters and len(options.chapters) > ExportLimits.MAX_CHAPTERS:
        problems.append(f"Cannot select more than {ExportLimits.MAX_CHAPTERS} chapters")

    if options.date_range:
        start, end = options.date_range.start, options.date_range.end
        if start >= end:
            problems.append("Start date must be before end date")
        else:
            months = (end - start).total_seconds() / 86400 / ExportLimits.DAYS_PER_MONTH
            if months > ExportLimits.MAX_DATE_RANGE_MONTHS:
                problems.append(f"Date range cannot exceed {ExportLimits.MAX_DATE_RANGE_MONTHS} months")

    return problems


def validate_export_options(options: ExportOptions) -> ExportOptions:
    """Raise ExportValidationError listing every problem, or return the options."""
    problems = collect_option_problems(options)
    if problems:
        raise ExportValidationError("; ".join(problems), problems=problems)
    return options
