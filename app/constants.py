# app/constants.py
"""
Centralized magic constants organized by domain.

All hardcoded numbers/strings used throughout the codebase should be
defined here with documentation explaining their purpose.
"""


class ExportLimits:
    """Validation limits for export requests."""

    MAX_CHAPTERS = 50                   # Chapter filter list length
    MAX_CUSTOM_NAME_CHARS = 100         # customName length
    MAX_DATE_RANGE_MONTHS = 24          # dateRange span, in 30-day months
    DAYS_PER_MONTH = 30                 # Month length used for the span check
    CONCURRENCY_WINDOW_MINUTES = 60     # In-flight export lookback for the same facilitator


class ExportDefaults:
    """Default values for export pipeline execution."""

    EXPIRY_DAYS = 30                    # Download availability after completion
    TOTAL_STEPS = 7                     # Fixed pipeline step count
    STALE_HOURS = 2                     # Orphaned queued/processing exports
    ZIP_COMPRESSION_LEVEL = 6           # zlib level for archive entries
    JSON_INDENT = 2                     # Pretty-print indent for embedded JSON

    # Artifact format tags read by the companion viewer
    EXPORT_VERSION = "2.0"
    DATA_FORMAT = "saga-export-v2"
    MINIMUM_VIEWER_VERSION = "1.0"
    RECOMMENDED_VIEWER_VERSION = "2.0"

    DEFAULT_NAME_PREFIX = "archival-export"
    DOWNLOAD_PATH_TEMPLATE = "/v1/exports/{export_id}/download"


class FileNames:
    """Sanitization limits for archive path segments."""

    MAX_CHARS = 100                     # Truncation length after sanitization
    FALLBACK = "unnamed"                # Substitute for an empty result
    UNCATEGORIZED = "uncategorized"     # Folder for stories without a chapter


class RetentionLimits:
    """Validity bounds for retention policies."""

    MIN_PERIOD_DAYS = 1
    MAX_PERIOD_DAYS = 10 * 365          # Ten years
    DAILY_RUN_HOUR_UTC = 2              # Scheduled execution time (02:00 UTC)


class StoragePrefixes:
    """Blob key prefixes. Project prefixes are followed by the project id."""

    AUDIO = "audio"
    IMAGES = "images"
    EXPORTS = "exports"
    TEMP = "temp/"
