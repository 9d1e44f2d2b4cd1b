"""Tests for the S3 storage backend."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from blobstore.infra.storage.client import (
    ObjectNotFoundError,
    StorageIOError,
    supports_lifecycle,
)
from blobstore.infra.storage.s3_client import S3Options, S3Storage, is_not_found
from tests.infra.fake_s3 import FakeS3Client, client_error


class TestS3StorageRoundTrip:
    """Behaviour against the in-memory S3 double."""

    def test_put_download_delete_scenario(self, s3_storage):
        s3_storage.put("k1", b"hello")
        assert s3_storage.download("k1") == b"hello"

        s3_storage.delete("k1")

        with pytest.raises(ObjectNotFoundError):
            s3_storage.download("k1")

    @pytest.mark.parametrize(
        "payload",
        [b"", b"\x00\x01\xff", bytes(range(256)) * (5 * 1024 * 1024 // 256)],
        ids=["empty", "binary", "five-megabytes"],
    )
    def test_round_trip(self, s3_storage, payload):
        s3_storage.put("some/nested/ref", payload)

        assert s3_storage.download("some/nested/ref") == payload

    def test_overwrite_returns_latest(self, s3_storage):
        s3_storage.put("ref", b"first")
        s3_storage.put("ref", b"second")

        assert s3_storage.download("ref") == b"second"

    def test_delete_of_absent_ref_succeeds(self, s3_storage, fake_s3):
        s3_storage.delete("never-written")

        assert fake_s3.calls == ["delete_object"]

    def test_put_applies_default_acl(self, s3_storage, fake_s3):
        s3_storage.put("ref", b"x")

        assert fake_s3.acls[("test", "ref")] == "private"

    def test_download_missing_is_not_found(self, s3_storage):
        with pytest.raises(ObjectNotFoundError) as excinfo:
            s3_storage.download("missing")

        assert excinfo.value.ref == "missing"
        assert excinfo.value.bucket == "test"
        assert excinfo.value.op == "s3.download"

    def test_concurrent_puts_do_not_cross_talk(self, s3_storage):
        refs = {f"ref-{i}": f"payload-{i}".encode() * (i + 1) for i in range(32)}

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda item: s3_storage.put(*item), refs.items()))

        with ThreadPoolExecutor(max_workers=8) as pool:
            downloaded = dict(zip(refs, pool.map(s3_storage.download, refs)))

        assert downloaded == refs

    def test_link_base(self, s3_storage, fake_s3):
        assert s3_storage.link_base() == "https://s3.us-east-1.amazonaws.com/test/"
        assert fake_s3.calls == []

    def test_link_base_uses_endpoint_override(self):
        fake = FakeS3Client(endpoint_url="http://localhost:9000")
        opts = {
            "region": "us-east-1",
            "bucketName": "media",
            "defaultACL": "public-read",
            "pathstyle": "true",
            "endpoint": "http://localhost:9000",
        }
        with patch.object(S3Storage, "_build_client", return_value=fake):
            storage = S3Storage(S3Options.from_opts(opts))

        assert storage.link_base() == "http://localhost:9000/media/"


class TestS3StorageErrors:
    """Error classification with a mocked boto3 client."""

    @pytest.fixture
    def mock_s3(self):
        mock_client = MagicMock()
        with patch.object(S3Storage, "_build_client", return_value=mock_client):
            yield mock_client

    @pytest.fixture
    def storage(self, mock_s3):
        return S3Storage(
            S3Options.from_opts(
                {
                    "region": "eu-west-1",
                    "bucketName": "blobs",
                    "defaultACL": "public-read",
                    "pathstyle": "false",
                }
            )
        )

    def test_put_calls_managed_uploader(self, storage, mock_s3):
        storage.put("ref", b"data")

        call = mock_s3.upload_fileobj.call_args
        assert call.args[0].read() == b"data"
        assert call.args[1:] == ("blobs", "ref")
        assert call.kwargs["ExtraArgs"] == {"ACL": "public-read"}

    def test_put_failure_is_io_error(self, storage, mock_s3):
        mock_s3.upload_fileobj.side_effect = Exception("Access Denied")

        with pytest.raises(StorageIOError, match="unable to upload ref 'ref' to bucket 'blobs'") as excinfo:
            storage.put("ref", b"data")

        assert "Access Denied" in str(excinfo.value)
        assert excinfo.value.ref == "ref"

    def test_download_forbidden_is_io_error(self, storage, mock_s3):
        mock_s3.download_fileobj.side_effect = client_error("403", 403, "HeadObject")

        with pytest.raises(StorageIOError, match="unable to download ref 'ref' from bucket 'blobs'"):
            storage.download("ref")

    def test_download_no_such_key_is_not_found(self, storage, mock_s3):
        mock_s3.download_fileobj.side_effect = client_error("NoSuchKey", 404, "GetObject")

        with pytest.raises(ObjectNotFoundError):
            storage.download("ref")

    def test_download_transport_error_is_io_error(self, storage, mock_s3):
        mock_s3.download_fileobj.side_effect = ConnectionError("connection reset")

        with pytest.raises(StorageIOError, match="connection reset"):
            storage.download("ref")

    def test_delete_calls_delete_object(self, storage, mock_s3):
        storage.delete("ref")

        mock_s3.delete_object.assert_called_once_with(Bucket="blobs", Key="ref")

    def test_delete_failure_is_io_error(self, storage, mock_s3):
        mock_s3.delete_object.side_effect = client_error("AccessDenied", 403, "DeleteObject")

        with pytest.raises(StorageIOError, match="unable to delete ref 'ref' from bucket 'blobs'"):
            storage.delete("ref")

    def test_create_bucket_outside_us_east_1_sets_location(self, storage, mock_s3):
        storage.create_bucket()

        mock_s3.create_bucket.assert_called_once_with(
            Bucket="blobs",
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )

    def test_delete_bucket_failure_is_io_error(self, storage, mock_s3):
        mock_s3.delete_bucket.side_effect = client_error("BucketNotEmpty", 409, "DeleteBucket")

        with pytest.raises(StorageIOError, match="unable to delete bucket 'blobs'"):
            storage.delete_bucket()


class TestS3StorageLifecycle:
    def test_supports_lifecycle_capability(self, s3_storage):
        assert supports_lifecycle(s3_storage)

    def test_create_and_delete_bucket(self, fake_s3):
        opts = {
            "region": "us-east-1",
            "bucketName": "scratch",
            "defaultACL": "private",
            "pathstyle": "false",
        }
        with patch.object(S3Storage, "_build_client", return_value=fake_s3):
            storage = S3Storage(S3Options.from_opts(opts))

        storage.create_bucket()
        assert "scratch" in fake_s3.buckets
        storage.delete_bucket()
        assert "scratch" not in fake_s3.buckets

    def test_close_clears_handle(self, s3_storage):
        s3_storage.close()
        s3_storage.close()

        assert s3_storage.bucket == ""
        with pytest.raises(StorageIOError, match="storage is closed"):
            s3_storage.put("ref", b"x")
        with pytest.raises(StorageIOError, match="storage is closed"):
            s3_storage.link_base()


class TestIsNotFound:
    def test_matches_status_code(self):
        assert is_not_found(client_error("Whatever", 404, "GetObject"))

    def test_ignores_other_errors(self):
        assert not is_not_found(client_error("AccessDenied", 403, "GetObject"))
        assert not is_not_found(ValueError("boom"))

    def test_custom_codes(self):
        exc = client_error("NoSuchEntity", 400, "DeleteRole")

        assert not is_not_found(exc)
        assert is_not_found(exc, {"NoSuchEntity"})
