# app/storage/s3_provider.py
"""
S3 blob store (AWS or any S3-compatible endpoint such as MinIO).

The original size and SHA256 travel as object metadata so that listing,
usage accounting and downloads never need a sidecar object.
"""

import logging
import os
from datetime import UTC, datetime, timedelta
from typing import Dict, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from app.storage.base import (
    ContentEncoding,
    ContentType,
    ObjectSummary,
    StorageMetadata,
    StorageObject,
    StorageProvider,
    compute_content_hash,
    decode_content,
    encode_content,
)
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})

# DeleteObjects accepts at most this many keys per call
DELETE_BATCH_SIZE = 1000


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in NOT_FOUND_CODES


def _naive_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return utcnow()
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def _batches(keys: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(keys), size):
        yield keys[start:start + size]


class S3StorageProvider(StorageProvider):
    """
    Configuration (constructor arguments win over environment):
    - S3_BUCKET (required)
    - S3_ENDPOINT_URL for S3-compatible services
    - S3_REGION (default us-east-1)
    - AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY via the boto3 credential chain
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client=None,
    ):
        self._bucket = bucket or os.getenv("S3_BUCKET")
        if not self._bucket:
            raise ValueError("S3 bucket required. Set S3_BUCKET env var or pass bucket.")

        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or os.getenv("S3_ENDPOINT_URL"),
            region_name=region or os.getenv("S3_REGION", "us-east-1"),
            config=Config(
                retries={"max_attempts": 3, "mode": "adaptive"},
                connect_timeout=5,
                read_timeout=60,
            ),
        )
        logger.info(f"S3 blob store: bucket={self._bucket}")

    @property
    def name(self) -> str:
        return "s3"

    @property
    def bucket(self) -> str:
        return self._bucket

    def _head(self, key: str) -> Optional[dict]:
        try:
            return self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise

    def _to_metadata(self, key: str, response: dict, size_bytes: int) -> StorageMetadata:
        object_metadata = response.get("Metadata", {})
        return StorageMetadata(
            uri=key,
            content_hash=object_metadata.get("content-hash", ""),
            content_type=ContentType.from_value(response.get("ContentType")),
            content_encoding=(
                ContentEncoding.GZIP if response.get("ContentEncoding") == "gzip" else ContentEncoding.IDENTITY
            ),
            size_bytes=size_bytes,
            original_size_bytes=int(object_metadata.get("original-size", size_bytes)),
            uploaded_at=_naive_utc(response.get("LastModified")),
            expires_at=_naive_utc(response["Expires"]) if response.get("Expires") else None,
            custom_metadata=object_metadata,
        )

    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_OCTET_STREAM,
        expires_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> StorageMetadata:
        stored, encoding = encode_content(content, content_type)
        content_hash = compute_content_hash(content)
        object_metadata = {
            **(metadata or {}),
            "original-size": str(len(content)),
            "content-hash": content_hash,
        }

        put_args = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": stored,
            "ContentType": content_type.value,
            "Metadata": object_metadata,
        }
        if encoding == ContentEncoding.GZIP:
            put_args["ContentEncoding"] = encoding.value
        expires_at = utcnow() + timedelta(days=expires_days) if expires_days else None
        if expires_at:
            put_args["Expires"] = expires_at

        try:
            self._client.put_object(**put_args)
        except ClientError as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise

        logger.debug(f"Stored {key} in S3 ({len(content)} -> {len(stored)} bytes)")
        return StorageMetadata(
            uri=key,
            content_hash=content_hash,
            content_type=content_type,
            content_encoding=encoding,
            size_bytes=len(stored),
            original_size_bytes=len(content),
            uploaded_at=utcnow(),
            expires_at=expires_at,
            custom_metadata=object_metadata,
        )

    def download(self, key: str) -> Optional[StorageObject]:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            logger.error(f"S3 download failed for {key}: {e}")
            raise

        stored = response["Body"].read()
        metadata = self._to_metadata(key, response, len(stored))
        return StorageObject(content=decode_content(stored, metadata.content_encoding), metadata=metadata)

    def exists(self, key: str) -> bool:
        return self._head(key) is not None

    def delete(self, key: str) -> bool:
        # DeleteObject succeeds for absent keys, so check first to report False
        if self._head(key) is None:
            return False
        self._client.delete_object(Bucket=self._bucket, Key=key)
        return True

    def get_metadata(self, key: str) -> Optional[StorageMetadata]:
        response = self._head(key)
        if response is None:
            return None
        return self._to_metadata(key, response, response.get("ContentLength", 0))

    def list_objects(self, prefix: str) -> list[ObjectSummary]:
        pages = self._client.get_paginator("list_objects_v2").paginate(Bucket=self._bucket, Prefix=prefix)
        return [
            ObjectSummary(
                key=obj["Key"],
                size_bytes=obj.get("Size", 0),
                uploaded_at=_naive_utc(obj.get("LastModified")),
            )
            for page in pages
            for obj in page.get("Contents", [])
        ]

    def delete_all(self, prefix: str) -> int:
        keys = [obj.key for obj in self.list_objects(prefix)]
        for batch in _batches(keys, DELETE_BATCH_SIZE):
            try:
                self._client.delete_objects(
                    Bucket=self._bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except ClientError as e:
                logger.error(f"S3 batch delete failed under {prefix}: {e}")
                raise
        return len(keys)
