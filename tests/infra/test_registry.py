"""Tests for the storage backend registry."""

from unittest.mock import patch

import pytest

from blobstore.infra.storage.client import InvalidConfigError
from blobstore.infra.storage.disk_client import DiskStorage
from blobstore.infra.storage.registry import StorageRegistry, default_registry
from blobstore.infra.storage.s3_client import S3Storage


class TestStorageRegistry:
    def test_register_and_dial(self):
        registry = StorageRegistry()
        seen = []

        def factory(opts):
            seen.append(opts)
            return "backend"

        registry.register("Fake", factory)

        assert registry.dial("Fake", {"k": "v"}) == "backend"
        assert seen == [{"k": "v"}]
        assert "Fake" in registry

    def test_duplicate_name_rejected(self):
        registry = StorageRegistry()
        registry.register("Fake", lambda opts: None)

        with pytest.raises(ValueError, match="already registered"):
            registry.register("Fake", lambda opts: None)

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            StorageRegistry().register("", lambda opts: None)

    def test_unknown_backend(self):
        registry = StorageRegistry()
        registry.register("Fake", lambda opts: None)

        with pytest.raises(InvalidConfigError, match=r"unknown storage backend 'S4' \(known: Fake\)"):
            registry.dial("S4", {})

    def test_dial_passes_a_copy_of_options(self):
        registry = StorageRegistry()
        registry.register("Fake", lambda opts: opts)
        opts = {"a": "1"}

        result = registry.dial("Fake", opts)
        result["a"] = "2"

        assert opts == {"a": "1"}


class TestDefaultRegistry:
    def test_contains_shipped_backends(self):
        assert default_registry().names() == ["Disk", "S3"]

    def test_registries_are_independent(self):
        first = default_registry()
        first.register("Extra", lambda opts: None)

        assert "Extra" not in default_registry()

    def test_dial_s3(self, fake_s3):
        opts = {
            "region": "us-east-1",
            "bucketName": "test",
            "defaultACL": "private",
            "pathstyle": "false",
        }
        with patch.object(S3Storage, "_build_client", return_value=fake_s3):
            storage = default_registry().dial("S3", opts)

        assert isinstance(storage, S3Storage)
        storage.put("k1", b"hello")
        assert storage.download("k1") == b"hello"

    def test_dial_s3_invalid_options(self):
        with patch.object(S3Storage, "_build_client") as build_client:
            with pytest.raises(InvalidConfigError):
                default_registry().dial("S3", {"region": "us-east-1"})

        build_client.assert_not_called()

    def test_dial_disk(self, tmp_path):
        storage = default_registry().dial("Disk", {"basePath": str(tmp_path)})

        assert isinstance(storage, DiskStorage)
