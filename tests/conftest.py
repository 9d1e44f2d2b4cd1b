from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from blobstore.common.config import _as_bool, get_settings

# 测试环境不读取真实 AWS 凭证（BLOBSTORE_TEST_USE_AWS 时除外），也不启用 API Key
if not _as_bool(os.getenv("BLOBSTORE_TEST_USE_AWS"), False):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ["API_KEY_ENABLED"] = "false"

from blobstore.infra.storage.s3_client import S3Options, S3Storage  # noqa: E402
from tests.infra.fake_s3 import FakeS3Client  # noqa: E402

TEST_OPTS = {
    "region": "us-east-1",
    "bucketName": "test",
    "defaultACL": "private",
    "pathstyle": "false",
}


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture
def fake_s3() -> FakeS3Client:
    client = FakeS3Client()
    client.buckets["test"] = {}
    return client


@pytest.fixture
def s3_storage(fake_s3: FakeS3Client):
    with patch.object(S3Storage, "_build_client", return_value=fake_s3):
        storage = S3Storage(S3Options.from_opts(TEST_OPTS))
    yield storage
    storage.close()
