# app/storage/factory.py
"""
Process-wide blob store.

Export pipelines, retention sweeps and the download endpoint all resolve the
same provider through `get_storage_provider()`. Tests install their own with
`set_storage_provider()`.
"""

import logging
from typing import Any

from app.storage.base import StorageProvider

logger = logging.getLogger(__name__)

_storage_provider: StorageProvider | None = None


def _build_s3(settings, **kwargs: Any) -> StorageProvider:
    from app.storage.s3_provider import S3StorageProvider

    kwargs.setdefault("bucket", settings.S3_BUCKET)
    kwargs.setdefault("endpoint_url", settings.S3_ENDPOINT_URL)
    kwargs.setdefault("region", settings.S3_REGION)
    return S3StorageProvider(**kwargs)


def _build_local(settings, **kwargs: Any) -> StorageProvider:
    from app.storage.local_provider import LocalStorageProvider

    kwargs.setdefault("base_path", settings.LOCAL_STORAGE_PATH)
    return LocalStorageProvider(**kwargs)


_BUILDERS = {
    "s3": _build_s3,
    "local": _build_local,
}


def get_storage_provider(provider_name: str | None = None, **kwargs: Any) -> StorageProvider:
    """
    Return the configured provider, building it on first use.

    Args:
        provider_name: 's3' or 'local'; defaults to settings.STORAGE_PROVIDER
        **kwargs: Overrides for the provider constructor

    Raises:
        ValueError: Unknown provider name
    """
    global _storage_provider

    if _storage_provider is None:
        from app.config import get_settings

        settings = get_settings()
        name = (provider_name or settings.STORAGE_PROVIDER).lower().strip()
        builder = _BUILDERS.get(name)
        if builder is None:
            raise ValueError(f"Unknown storage provider: {name}. Available: {', '.join(_BUILDERS)}")

        _storage_provider = builder(settings, **kwargs)
        logger.info(
            f"Blob store ready: {_storage_provider.name}",
            extra={"event": "storage_initialized"},
        )

    return _storage_provider


def set_storage_provider(provider: StorageProvider) -> None:
    global _storage_provider
    _storage_provider = provider


def reset_storage_provider() -> None:
    global _storage_provider
    _storage_provider = None
