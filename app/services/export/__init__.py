# app/services/export/__init__.py
"""
Export services for the archival lifecycle.

Modules:
- options: ExportOptions value object and validation
- snapshots: detached copies of the rows an export is built from
- archive_builder: snapshot -> zip archive or JSON document
- export_pipeline: the seven-step background run
- export_job_manager: spawns and tracks pipeline tasks
- export_service: create, status, list, download, delete, analytics
"""

from app.services.export.archive_builder import (
    ArchiveBuilder,
    ExportArtifact,
    build_export,
    generate_readme,
    verify_export_artifact,
)
from app.services.export.export_job_manager import ExportJobManager
from app.services.export.export_pipeline import ExportPipeline, build_export_file_name
from app.services.export.export_service import (
    create_export,
    delete_export,
    get_export_analytics,
    get_export_status,
    list_project_exports,
    open_export_download,
)
from app.services.export.options import DateRange, ExportOptions, validate_export_options

__all__ = [
    # Options
    "ExportOptions",
    "DateRange",
    "validate_export_options",
    # Builder
    "ArchiveBuilder",
    "ExportArtifact",
    "build_export",
    "generate_readme",
    "verify_export_artifact",
    # Pipeline
    "ExportPipeline",
    "ExportJobManager",
    "build_export_file_name",
    # Service
    "create_export",
    "get_export_status",
    "list_project_exports",
    "open_export_download",
    "delete_export",
    "get_export_analytics",
]
