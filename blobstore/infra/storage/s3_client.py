"""S3-compatible storage backend.

This module stores blobs in a single Amazon S3 bucket (or a bucket on any
S3-compatible service reachable through an endpoint override).

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import enum
import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config

from blobstore.infra.storage.client import (
    InvalidConfigError,
    ObjectNotFoundError,
    StorageIOError,
)

if TYPE_CHECKING:
    from blobstore.infra.storage.registry import StorageRegistry

logger = logging.getLogger(__name__)

BACKEND_NAME = "S3"

# Keys of the flat option map handed over by server configuration.
REGION_KEY = "region"
BUCKET_NAME_KEY = "bucketName"
DEFAULT_ACL_KEY = "defaultACL"
PATH_STYLE_KEY = "pathstyle"
ENDPOINT_KEY = "endpoint"

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class ACL(str, enum.Enum):
    """Canned ACLs applied to newly written objects."""

    # Owner gets FULL_CONTROL, the AllUsers group gets READ.
    PUBLIC_READ = "public-read"
    # Owner gets FULL_CONTROL, nobody else has access.
    PRIVATE = "private"


@dataclass(frozen=True, slots=True)
class S3Options:
    """Validated configuration of an S3 backend."""

    region: str
    bucket_name: str
    default_acl: ACL
    path_style: bool
    endpoint: str | None = None

    @classmethod
    def from_opts(cls, opts: Mapping[str, str]) -> "S3Options":
        """Parse the flat string options used in server configuration.

        Raises:
            InvalidConfigError: If a required option is missing, ``pathstyle``
                is not ``true``/``false`` or ``defaultACL`` is unknown.
        """
        op = "s3.new"
        for key in (REGION_KEY, BUCKET_NAME_KEY, DEFAULT_ACL_KEY, PATH_STYLE_KEY):
            if key not in opts:
                raise InvalidConfigError(f"{key!r} option is required", op=op)

        raw_path_style = opts[PATH_STYLE_KEY].strip()
        if raw_path_style not in ("true", "false"):
            raise InvalidConfigError(
                f"{PATH_STYLE_KEY!r} must be true or false", op=op
            )

        try:
            acl = ACL(opts[DEFAULT_ACL_KEY])
        except ValueError as exc:
            raise InvalidConfigError(
                "valid ACL values for S3 are "
                f"{ACL.PRIVATE.value} and {ACL.PUBLIC_READ.value}",
                op=op,
            ) from exc

        return cls(
            region=opts[REGION_KEY],
            bucket_name=opts[BUCKET_NAME_KEY],
            default_acl=acl,
            path_style=raw_path_style == "true",
            endpoint=opts.get(ENDPOINT_KEY) or None,
        )


def is_not_found(exc: Exception, codes: Iterable[str] = _NOT_FOUND_CODES) -> bool:
    """Whether ``exc`` is a botocore error reporting a missing entity."""
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return False
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    code = response.get("Error", {}).get("Code")
    return status == 404 or code in codes


class S3Storage:
    """Blob storage on an S3 bucket.

    The underlying boto3 client is thread-safe and the backend keeps no
    per-call state, so one instance may serve concurrent requests. Large
    payloads are chunked by boto3's managed transfer; nothing is retried
    here beyond what botocore itself does.
    """

    def __init__(
        self,
        options: S3Options,
        *,
        transfer_config: TransferConfig | None = None,
    ) -> None:
        self._options = options
        self._bucket = options.bucket_name
        self._acl = options.default_acl.value
        self._transfer_config = transfer_config or TransferConfig()
        self._client = self._build_client(options)

    @staticmethod
    def _build_client(options: S3Options) -> Any:
        """Create a boto3 S3 client using the ambient credential chain."""
        addressing_style = "path" if options.path_style else "virtual"
        try:
            session = boto3.session.Session(region_name=options.region)
            return session.client(
                "s3",
                endpoint_url=options.endpoint,
                config=Config(s3={"addressing_style": addressing_style}),
            )
        except Exception as exc:
            raise StorageIOError(
                f"unable to create Amazon session: {exc}", op="s3.new"
            ) from exc

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def options(self) -> S3Options:
        return self._options

    def _require_client(self, op: str, ref: str | None = None) -> Any:
        if self._client is None:
            raise StorageIOError("storage is closed", op=op, ref=ref)
        return self._client

    def link_base(self) -> str:
        client = self._require_client("s3.link_base")
        return f"{client.meta.endpoint_url}/{self._bucket}/"

    def put(self, ref: str, data: bytes) -> None:
        op = "s3.put"
        client = self._require_client(op, ref)
        try:
            client.upload_fileobj(
                io.BytesIO(data),
                self._bucket,
                ref,
                ExtraArgs={"ACL": self._acl},
                Config=self._transfer_config,
            )
        except Exception as exc:
            raise StorageIOError(
                f"unable to upload ref {ref!r} to bucket {self._bucket!r}: {exc}",
                op=op,
                ref=ref,
                bucket=self._bucket,
            ) from exc
        logger.debug("s3_put bucket=%s ref=%s size=%d", self._bucket, ref, len(data))

    def download(self, ref: str) -> bytes:
        op = "s3.download"
        client = self._require_client(op, ref)
        buf = io.BytesIO()
        try:
            client.download_fileobj(
                self._bucket, ref, buf, Config=self._transfer_config
            )
        except Exception as exc:
            if is_not_found(exc):
                raise ObjectNotFoundError(
                    f"ref {ref!r} not found in bucket {self._bucket!r}: {exc}",
                    op=op,
                    ref=ref,
                    bucket=self._bucket,
                ) from exc
            raise StorageIOError(
                f"unable to download ref {ref!r} from bucket {self._bucket!r}: {exc}",
                op=op,
                ref=ref,
                bucket=self._bucket,
            ) from exc
        return buf.getvalue()

    def delete(self, ref: str) -> None:
        op = "s3.delete"
        client = self._require_client(op, ref)
        try:
            client.delete_object(Bucket=self._bucket, Key=ref)
        except Exception as exc:
            raise StorageIOError(
                f"unable to delete ref {ref!r} from bucket {self._bucket!r}: {exc}",
                op=op,
                ref=ref,
                bucket=self._bucket,
            ) from exc
        logger.debug("s3_delete bucket=%s ref=%s", self._bucket, ref)

    def close(self) -> None:
        # boto3 clients hold no resources that need an explicit shutdown.
        self._client = None
        self._bucket = ""

    def create_bucket(self) -> None:
        op = "s3.create_bucket"
        client = self._require_client(op)
        params: dict[str, Any] = {"Bucket": self._bucket}
        if self._options.region != "us-east-1":
            params["CreateBucketConfiguration"] = {
                "LocationConstraint": self._options.region
            }
        try:
            client.create_bucket(**params)
        except Exception as exc:
            raise StorageIOError(
                f"unable to create bucket {self._bucket!r}: {exc}",
                op=op,
                bucket=self._bucket,
            ) from exc

    def delete_bucket(self) -> None:
        op = "s3.delete_bucket"
        client = self._require_client(op)
        try:
            client.delete_bucket(Bucket=self._bucket)
        except Exception as exc:
            raise StorageIOError(
                f"unable to delete bucket {self._bucket!r}: {exc}",
                op=op,
                bucket=self._bucket,
            ) from exc


def new(opts: Mapping[str, str]) -> S3Storage:
    """Build an :class:`S3Storage` from flat server configuration options."""
    return S3Storage(S3Options.from_opts(opts))


def register(registry: "StorageRegistry") -> None:
    registry.register(BACKEND_NAME, new)
