# app/storage/local_provider.py
"""
Filesystem blob store for development and tests.

Each object is a plain file under base_path with its StorageMetadata in a
`<key>.meta.json` sidecar. Files dropped in by hand (fixtures, copied media)
have no sidecar and are served as raw octet-stream blobs.
"""

import json
import logging
import os
from datetime import timedelta
from pathlib import Path

from app.storage.base import (
    ContentType,
    ObjectSummary,
    StorageMetadata,
    StorageObject,
    StorageProvider,
    compute_content_hash,
    decode_content,
    encode_content,
)
from app.utils.time import from_timestamp, utcnow

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta.json"


class LocalStorageProvider(StorageProvider):
    def __init__(self, base_path: str | None = None):
        self._base_path = Path(base_path or os.getenv("LOCAL_STORAGE_PATH", "./storage"))
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._root = self._base_path.resolve()
        logger.info(f"Local blob store at {self._root}")

    @property
    def name(self) -> str:
        return "local"

    def _resolve(self, relative: str) -> Path:
        path = (self._root / relative).resolve()
        if not path.is_relative_to(self._root):
            raise ValueError("Path traversal detected")
        return path

    def _get_path(self, key: str) -> Path:
        return self._resolve(key)

    def _get_metadata_path(self, key: str) -> Path:
        return self._resolve(key + METADATA_SUFFIX)

    def _write_metadata(self, metadata: StorageMetadata) -> None:
        self._get_metadata_path(metadata.uri).write_text(json.dumps(metadata.to_dict(), indent=2))

    def _read_metadata(self, key: str, path: Path) -> StorageMetadata:
        """Sidecar metadata, or metadata derived from the file itself."""
        sidecar = self._get_metadata_path(key)
        if sidecar.exists():
            try:
                return StorageMetadata.from_dict(json.loads(sidecar.read_text()))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Ignoring unreadable metadata for {key}: {e}")

        stat = path.stat()
        return StorageMetadata.for_raw_blob(key, stat.st_size, from_timestamp(stat.st_mtime))

    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_OCTET_STREAM,
        expires_days: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> StorageMetadata:
        stored, encoding = encode_content(content, content_type)
        now = utcnow()

        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(stored)

        result = StorageMetadata(
            uri=key,
            content_hash=compute_content_hash(content),
            content_type=content_type,
            content_encoding=encoding,
            size_bytes=len(stored),
            original_size_bytes=len(content),
            uploaded_at=now,
            expires_at=now + timedelta(days=expires_days) if expires_days else None,
            custom_metadata=metadata or {},
        )
        self._write_metadata(result)

        logger.debug(f"Stored {key} ({len(stored)} bytes, {encoding.value})")
        return result

    def download(self, key: str) -> StorageObject | None:
        path = self._get_path(key)
        if not path.exists():
            return None

        metadata = self._read_metadata(key, path)
        if metadata.is_expired(utcnow()):
            logger.debug(f"Object expired: {key}")
            return None

        return StorageObject(
            content=decode_content(path.read_bytes(), metadata.content_encoding),
            metadata=metadata,
        )

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> bool:
        path = self._get_path(key)
        self._get_metadata_path(key).unlink(missing_ok=True)
        if not path.exists():
            return False
        path.unlink()
        return True

    def get_metadata(self, key: str) -> StorageMetadata | None:
        path = self._get_path(key)
        if not path.exists():
            return None
        return self._read_metadata(key, path)

    def list_objects(self, prefix: str) -> list[ObjectSummary]:
        # A prefix can stop mid-segment ("audio/p1"), so walk from its directory
        walk_from = self._get_path(prefix) if not prefix or prefix.endswith("/") else self._get_path(prefix).parent
        if not walk_from.exists():
            return []

        summaries = []
        for path in walk_from.rglob("*"):
            if not path.is_file() or path.name.endswith(METADATA_SUFFIX):
                continue
            key = path.relative_to(self._root).as_posix()
            if not key.startswith(prefix):
                continue
            metadata = self._read_metadata(key, path)
            summaries.append(ObjectSummary(key=key, size_bytes=metadata.size_bytes, uploaded_at=metadata.uploaded_at))

        return summaries
