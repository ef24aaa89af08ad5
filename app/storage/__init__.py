# app/storage/__init__.py
"""
Blob store gateway for project media and export artifacts.

Recordings, photos and built exports live in object storage (S3 in
production, the local filesystem in development and tests), never in the
database. Key layout is defined in `app.storage.keys`.
"""

from app.storage.base import (
    ContentEncoding,
    ContentType,
    ObjectSummary,
    StorageMetadata,
    StorageObject,
    StorageProvider,
)
from app.storage.factory import (
    get_storage_provider,
    reset_storage_provider,
    set_storage_provider,
)
from app.storage.keys import (
    calculate_project_storage_usage,
    export_key,
    project_prefixes,
)

__all__ = [
    "StorageProvider",
    "StorageObject",
    "StorageMetadata",
    "ObjectSummary",
    "ContentType",
    "ContentEncoding",
    "get_storage_provider",
    "set_storage_provider",
    "reset_storage_provider",
    "project_prefixes",
    "export_key",
    "calculate_project_storage_usage",
]
