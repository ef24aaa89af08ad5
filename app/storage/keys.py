# app/storage/keys.py
"""
Blob key layout and per-project storage accounting.

Keys:
    audio/{project_id}/...      story recordings
    images/{project_id}/...     story photos
    exports/{project_id}/...    built export artifacts
    temp/...                    scratch uploads, swept by retention
"""

import logging

from app.constants import StoragePrefixes
from app.storage.base import StorageProvider

logger = logging.getLogger(__name__)


def project_prefixes(project_id) -> list[str]:
    """Every key prefix owned by a project."""
    return [
        f"{StoragePrefixes.AUDIO}/{project_id}/",
        f"{StoragePrefixes.IMAGES}/{project_id}/",
        f"{StoragePrefixes.EXPORTS}/{project_id}/",
    ]


def export_key(project_id, file_name: str) -> str:
    """Key for a built export artifact."""
    return f"{StoragePrefixes.EXPORTS}/{project_id}/{file_name}"


def calculate_project_storage_usage(storage: StorageProvider, project_id) -> int:
    """
    Total stored bytes across a project's prefixes.

    A prefix that cannot be listed counts as zero; usage feeds reports and
    manifests, never a deletion decision.
    """
    total = 0
    for prefix in project_prefixes(project_id):
        try:
            total += storage.get_usage(prefix)
        except Exception as e:
            logger.warning(f"Failed to measure storage under {prefix}: {e}")
    return total
