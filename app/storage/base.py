# app/storage/base.py
"""
Blob store interface.

Projects reference recordings and photos by key; export artifacts are
written under exports/. Rows in the database only ever hold keys.

At-rest encoding depends on the content type: text and JSON are gzipped,
media and zip archives are stored untouched since they are already
compressed. Callers always see the original bytes.
"""

import gzip
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ContentType(str, Enum):
    TEXT_PLAIN = "text/plain"
    APPLICATION_JSON = "application/json"
    APPLICATION_ZIP = "application/zip"
    APPLICATION_OCTET_STREAM = "application/octet-stream"
    AUDIO_MPEG = "audio/mpeg"
    AUDIO_MP4 = "audio/mp4"
    IMAGE_JPEG = "image/jpeg"
    IMAGE_PNG = "image/png"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "ContentType":
        """Unknown or missing MIME strings map to octet-stream."""
        try:
            return cls(value) if value else cls.APPLICATION_OCTET_STREAM
        except ValueError:
            return cls.APPLICATION_OCTET_STREAM


class ContentEncoding(str, Enum):
    GZIP = "gzip"
    IDENTITY = "identity"


COMPRESSIBLE_TYPES = {ContentType.TEXT_PLAIN, ContentType.APPLICATION_JSON}


@dataclass
class StorageMetadata:
    """What the store knows about one object, independent of backend."""

    uri: str
    content_hash: str  # SHA256 of the original bytes, "" when unknown
    content_type: ContentType
    content_encoding: ContentEncoding
    size_bytes: int  # as stored
    original_size_bytes: int
    uploaded_at: datetime  # naive UTC
    expires_at: Optional[datetime] = None
    custom_metadata: Dict[str, str] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    @classmethod
    def for_raw_blob(
        cls,
        key: str,
        size_bytes: int,
        uploaded_at: datetime,
        content_hash: str = "",
        content_type: ContentType = ContentType.APPLICATION_OCTET_STREAM,
    ) -> "StorageMetadata":
        """Metadata for an object written outside this interface (no encoding, no expiry)."""
        return cls(
            uri=key,
            content_hash=content_hash,
            content_type=content_type,
            content_encoding=ContentEncoding.IDENTITY,
            size_bytes=size_bytes,
            original_size_bytes=size_bytes,
            uploaded_at=uploaded_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "content_hash": self.content_hash,
            "content_type": self.content_type.value,
            "content_encoding": self.content_encoding.value,
            "size_bytes": self.size_bytes,
            "original_size_bytes": self.original_size_bytes,
            "uploaded_at": self.uploaded_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "custom_metadata": self.custom_metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageMetadata":
        """Inverse of to_dict. Raises KeyError/ValueError on malformed input."""
        expires_at = data.get("expires_at")
        return cls(
            uri=data["uri"],
            content_hash=data["content_hash"],
            content_type=ContentType.from_value(data["content_type"]),
            content_encoding=ContentEncoding(data["content_encoding"]),
            size_bytes=data["size_bytes"],
            original_size_bytes=data["original_size_bytes"],
            uploaded_at=datetime.fromisoformat(data["uploaded_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            custom_metadata=data.get("custom_metadata", {}),
        )


@dataclass
class StorageObject:
    content: bytes  # decoded
    metadata: StorageMetadata
    exists: bool = True


@dataclass
class ObjectSummary:
    """Listing entry used by usage accounting and retention sweeps."""

    key: str
    size_bytes: int
    uploaded_at: datetime  # naive UTC


def compute_content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def encoding_for(content_type: ContentType) -> ContentEncoding:
    return ContentEncoding.GZIP if content_type in COMPRESSIBLE_TYPES else ContentEncoding.IDENTITY


def encode_content(content: bytes, content_type: ContentType) -> tuple[bytes, ContentEncoding]:
    """Bytes as they should be stored, plus the encoding applied."""
    encoding = encoding_for(content_type)
    if encoding == ContentEncoding.GZIP:
        return gzip.compress(content, compresslevel=6), encoding
    return content, encoding


def decode_content(stored: bytes, encoding: ContentEncoding) -> bytes:
    if encoding == ContentEncoding.GZIP:
        return gzip.decompress(stored)
    return stored


class StorageProvider(ABC):
    """
    Backend-neutral blob store.

    Missing objects are reported as None/False. Backend failures raise, so
    callers decide whether a failure is fatal (upload of a built export) or
    best-effort (media download inside the archive builder).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short backend name used in logs ('s3', 'local')."""

    @abstractmethod
    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_OCTET_STREAM,
        expires_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> StorageMetadata:
        """
        Store content under key, encoding it according to content_type.

        Args:
            key: Object key, e.g. "exports/{project_id}/archival-export-{id}.zip"
            content: Original bytes
            content_type: MIME type of the original bytes
            expires_days: Days until the object is treated as gone
            metadata: Extra string metadata kept with the object
        """

    @abstractmethod
    def download(self, key: str) -> Optional[StorageObject]:
        """Decoded object, or None if it does not exist or has expired."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """True if something was deleted, False if the key was absent."""

    @abstractmethod
    def get_metadata(self, key: str) -> Optional[StorageMetadata]:
        ...

    @abstractmethod
    def list_objects(self, prefix: str) -> list[ObjectSummary]:
        """Every object whose key starts with prefix."""

    def get_size(self, key: str) -> int:
        """Stored size in bytes, 0 when the object does not exist."""
        metadata = self.get_metadata(key)
        return metadata.size_bytes if metadata else 0

    def get_usage(self, prefix: str) -> int:
        return sum(obj.size_bytes for obj in self.list_objects(prefix))

    def list_older_than(self, prefix: str, cutoff: datetime) -> list[ObjectSummary]:
        """Objects under prefix uploaded before cutoff (naive UTC)."""
        return [obj for obj in self.list_objects(prefix) if obj.uploaded_at < cutoff]

    def delete_all(self, prefix: str) -> int:
        """Delete everything under prefix; returns the number of objects removed."""
        return sum(1 for obj in self.list_objects(prefix) if self.delete(obj.key))
