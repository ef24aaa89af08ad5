# app/errors.py
"""
Error taxonomy for the archival lifecycle.

Synchronous errors (validation, access, not found, conflict) are raised to
callers of the export service and mapped to HTTP status codes by the routers.
Pipeline and download failures are recovered inside the services and only
ever show up as persisted state or log lines.
"""


class LifecycleError(Exception):
    """Base class for export and retention errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExportValidationError(LifecycleError):
    """Export options failed validation. Nothing was persisted."""

    status_code = 400

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or [message]


class AccessDenied(LifecycleError):
    """Caller holds no role on the project."""

    status_code = 403


class NotFound(LifecycleError):
    """Unknown project or export id."""

    status_code = 404


class ConcurrencyConflict(LifecycleError):
    """An in-flight export already exists for this project and facilitator."""

    status_code = 409


class ExportNotReady(LifecycleError):
    """Download requested for an export that is not ready."""

    status_code = 409


class ExportExpired(LifecycleError):
    """Download requested after the export's expiry."""

    status_code = 410


class DownloadFailure(LifecycleError):
    """A single blob could not be fetched while building an archive."""


class PipelineFailure(LifecycleError):
    """An export pipeline step failed after the caller had returned."""

    def __init__(self, message: str, step: str | None = None):
        super().__init__(message)
        self.step = step


class TransactionFailure(LifecycleError):
    """The cascading project purge failed and was rolled back."""

    def __init__(self, message: str, project_id: str | None = None):
        super().__init__(message)
        self.project_id = project_id
