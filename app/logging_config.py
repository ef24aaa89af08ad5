"""
Structured JSON logging for the archival lifecycle.

Provides structured logging with export/policy context for correlating logs
across pipeline steps and retention sweeps, plus context managers for
pipeline steps and blob store operations.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variables for correlation
export_id_var: ContextVar[str | None] = ContextVar("export_id", default=None)
policy_var: ContextVar[str | None] = ContextVar("policy", default=None)
step_var: ContextVar[str | None] = ContextVar("step", default=None)


# Extra fields copied from log records into the JSON payload
_EXTRA_KEYS = (
    "event",
    "duration_ms",
    "operation",
    "key",
    "size_bytes",
    "export_id",
    "project_id",
    "policy",
    "data_type",
    "progress",
    "status",
    "count",
    "items_processed",
    "items_deleted",
    "storage_freed",
)


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "export_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Context set by the pipeline / retention engine
        export_id = export_id_var.get()
        if export_id:
            log_data["export_id"] = export_id

        policy = policy_var.get()
        if policy:
            log_data["policy"] = policy

        step = step_var.get()
        if step:
            log_data["step"] = step

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure root logging.

    Args:
        json_format: If True, use JSON format. If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_export_step(step: str, index: int, export_id: str | None = None):
    """
    Context manager for export pipeline step logging.

    Logs step start and end with duration.

    Usage:
        with log_export_step("collect_data", 3, export_id=str(export.id)):
            # ... step logic ...
    """
    if export_id:
        export_id_var.set(export_id)
    step_var.set(step)

    start_time = time.time()
    logger = logging.getLogger("export.pipeline")

    logger.debug(f"Step {index} {step} started", extra={"event": "step_start"})

    try:
        yield
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Step {index} {step} completed",
            extra={"event": "step_complete", "duration_ms": duration_ms},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Step {index} {step} failed: {e}",
            extra={"event": "step_failed", "duration_ms": duration_ms},
        )
        raise
    finally:
        step_var.set(None)


@contextmanager
def log_storage_operation(operation: str, key: str):
    """
    Context manager for blob store operation instrumentation.

    Usage:
        with log_storage_operation("upload", "exports/p1/a.zip") as metrics:
            storage.upload(key, content)
            metrics["size_bytes"] = len(content)
    """
    start_time = time.time()
    logger = logging.getLogger("export.storage")
    metrics: dict = {"size_bytes": 0}

    try:
        yield metrics

        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"Storage {operation} completed: {key} ({metrics['size_bytes']} bytes, {duration_ms}ms)",
            extra={
                "event": f"storage_{operation}_complete",
                "operation": operation,
                "key": key,
                "duration_ms": duration_ms,
                "size_bytes": metrics["size_bytes"],
            },
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Storage {operation} failed: {key} - {e}",
            extra={
                "event": f"storage_{operation}_failed",
                "operation": operation,
                "key": key,
                "duration_ms": duration_ms,
            },
        )
        raise


@contextmanager
def retention_policy_context(policy_name: str):
    """Tag every log line emitted during a policy run with the policy name."""
    token = policy_var.set(policy_name)
    try:
        yield
    finally:
        policy_var.reset(token)
