"""Tests for LocalStorageProvider."""

import os
import tempfile
from datetime import timedelta

import pytest

from app.storage.base import ContentEncoding, ContentType
from app.storage.keys import calculate_project_storage_usage, project_prefixes
from app.storage.local_provider import LocalStorageProvider
from app.utils.time import utcnow


class TestPathTraversal:
    """Verify _get_path rejects path traversal attempts."""

    def setup_method(self):
        self.tmpdir = os.path.realpath(tempfile.mkdtemp())
        self.provider = LocalStorageProvider(base_path=self.tmpdir)

    def test_traversal_with_dotdot(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.provider._get_path("../../../etc/passwd")

    def test_traversal_with_absolute(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.provider._get_path("/etc/passwd")

    def test_normal_key_succeeds(self):
        path = self.provider._get_path("exports/p1/archival-export-abc.zip")
        assert str(path).startswith(self.tmpdir)

    def test_metadata_traversal(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.provider._get_metadata_path("../../../etc/passwd")


class TestUploadDownload:
    def test_json_is_compressed_at_rest(self, storage):
        content = b'{"stories": []}' * 50

        metadata = storage.upload("exports/p1/a.json", content, content_type=ContentType.APPLICATION_JSON)
        obj = storage.download("exports/p1/a.json")

        assert metadata.content_encoding == ContentEncoding.GZIP
        assert metadata.size_bytes < len(content)
        assert obj.content == content
        assert obj.metadata.content_type == ContentType.APPLICATION_JSON

    def test_zip_is_stored_as_is(self, storage):
        metadata = storage.upload("exports/p1/a.zip", b"PK-bytes", content_type=ContentType.APPLICATION_ZIP)
        assert metadata.content_encoding == ContentEncoding.IDENTITY
        assert metadata.size_bytes == len(b"PK-bytes")

    def test_missing_object(self, storage):
        assert storage.download("exports/p1/missing.zip") is None
        assert storage.get_size("exports/p1/missing.zip") == 0
        assert storage.delete("exports/p1/missing.zip") is False

    def test_blob_without_sidecar(self, storage, tmp_path):
        target = tmp_path / "storage" / "audio" / "p1" / "s1.mp3"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"ID3")

        obj = storage.download("audio/p1/s1.mp3")

        assert obj.content == b"ID3"
        assert obj.metadata.content_type == ContentType.APPLICATION_OCTET_STREAM

    def test_delete_removes_sidecar(self, storage, tmp_path):
        storage.upload("temp/x.bin", b"1")

        assert storage.delete("temp/x.bin") is True
        assert not (tmp_path / "storage" / "temp" / "x.bin.meta.json").exists()


class TestListing:
    def test_list_objects_by_prefix(self, storage):
        storage.upload("audio/p1/a.mp3", b"aaa")
        storage.upload("audio/p1/b.mp3", b"bb")
        storage.upload("audio/p2/c.mp3", b"c")

        keys = sorted(o.key for o in storage.list_objects("audio/p1/"))

        assert keys == ["audio/p1/a.mp3", "audio/p1/b.mp3"]
        assert storage.get_usage("audio/p1/") == 5

    def test_sidecars_are_not_listed(self, storage):
        storage.upload("temp/a.bin", b"1")
        assert [o.key for o in storage.list_objects("temp/")] == ["temp/a.bin"]

    def test_list_older_than(self, storage):
        storage.upload("temp/a.bin", b"1")

        assert storage.list_older_than("temp/", utcnow() - timedelta(days=1)) == []
        assert len(storage.list_older_than("temp/", utcnow() + timedelta(days=1))) == 1

    def test_delete_all(self, storage):
        storage.upload("exports/p1/a.zip", b"1")
        storage.upload("exports/p1/b.zip", b"2")
        storage.upload("exports/p2/c.zip", b"3")

        assert storage.delete_all("exports/p1/") == 2
        assert storage.exists("exports/p2/c.zip")

    def test_project_usage_spans_prefixes(self, storage):
        storage.upload("audio/p1/a.mp3", b"aaaa")
        storage.upload("images/p1/a.jpg", b"bb")
        storage.upload("exports/p1/e.zip", b"c")
        storage.upload("audio/p2/a.mp3", b"zzzzzz")

        assert calculate_project_storage_usage(storage, "p1") == 7
        assert project_prefixes("p1") == ["audio/p1/", "images/p1/", "exports/p1/"]


class TestExpiry:
    def test_expired_object_is_not_returned(self, storage):
        metadata = storage.upload("exports/p1/a.zip", b"zip", expires_days=1)
        metadata.expires_at = utcnow() - timedelta(minutes=1)
        storage._write_metadata(metadata)

        assert storage.download("exports/p1/a.zip") is None
