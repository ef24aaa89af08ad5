"""Tests for S3StorageProvider against a mocked boto3 client."""

import gzip
import io
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from app.storage.base import ContentEncoding, ContentType
from app.storage.s3_provider import S3StorageProvider


def client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "operation")


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def provider(client):
    return S3StorageProvider(bucket="archive-bucket", client=client)


class TestS3StorageProvider:
    def test_requires_bucket(self, client, monkeypatch):
        monkeypatch.delenv("S3_BUCKET", raising=False)
        with pytest.raises(ValueError, match="S3 bucket required"):
            S3StorageProvider(client=client)

    def test_upload_json_is_gzipped(self, provider, client):
        content = b'{"a": 1}' * 20

        metadata = provider.upload(
            "exports/p1/a.json",
            content,
            content_type=ContentType.APPLICATION_JSON,
            expires_days=30,
            metadata={"export_id": "e1"},
        )

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "archive-bucket"
        assert kwargs["ContentEncoding"] == "gzip"
        assert gzip.decompress(kwargs["Body"]) == content
        assert kwargs["Metadata"]["export_id"] == "e1"
        assert "Expires" in kwargs
        assert metadata.content_encoding == ContentEncoding.GZIP
        assert metadata.expires_at is not None

    def test_upload_zip_is_not_encoded(self, provider, client):
        provider.upload("exports/p1/a.zip", b"PK", content_type=ContentType.APPLICATION_ZIP)
        kwargs = client.put_object.call_args.kwargs
        assert "ContentEncoding" not in kwargs
        assert kwargs["Body"] == b"PK"

    def test_download_decodes(self, provider, client):
        client.get_object.return_value = {
            "Body": io.BytesIO(gzip.compress(b"hello")),
            "ContentEncoding": "gzip",
            "ContentType": "application/json",
            "LastModified": datetime(2024, 1, 1, tzinfo=UTC),
            "Metadata": {"original-size": "5"},
        }

        obj = provider.download("exports/p1/a.json")

        assert obj.content == b"hello"
        assert obj.metadata.content_type == ContentType.APPLICATION_JSON
        assert obj.metadata.uploaded_at == datetime(2024, 1, 1)

    def test_download_missing_returns_none(self, provider, client):
        client.get_object.side_effect = client_error("NoSuchKey")
        assert provider.download("missing") is None

    def test_download_backend_error_propagates(self, provider, client):
        client.get_object.side_effect = client_error("AccessDenied")
        with pytest.raises(ClientError):
            provider.download("exports/p1/a.zip")

    def test_delete_missing_returns_false(self, provider, client):
        client.head_object.side_effect = client_error("404")

        assert provider.delete("missing") is False
        client.delete_object.assert_not_called()

    def test_list_objects_paginates(self, provider, client):
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "temp/a", "Size": 3, "LastModified": datetime(2024, 1, 1, tzinfo=UTC)}]},
            {"Contents": [{"Key": "temp/b", "Size": 4, "LastModified": datetime(2024, 3, 1, tzinfo=UTC)}]},
        ]

        assert [o.key for o in provider.list_objects("temp/")] == ["temp/a", "temp/b"]
        assert provider.get_usage("temp/") == 7
        assert [o.key for o in provider.list_older_than("temp/", datetime(2024, 2, 1))] == ["temp/a"]

    def test_delete_all_batches(self, provider, client):
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": f"audio/p1/{i}.mp3", "Size": 1} for i in range(1500)]}
        ]

        assert provider.delete_all("audio/p1/") == 1500
        assert client.delete_objects.call_count == 2
