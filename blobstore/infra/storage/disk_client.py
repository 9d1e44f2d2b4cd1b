"""Local disk storage backend.

Blobs live as individual files under a base directory. Refs are
percent-encoded so that every ref maps to exactly one file name.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Mapping
from urllib.parse import quote

from blobstore.infra.storage.client import (
    InvalidConfigError,
    ObjectNotFoundError,
    StorageIOError,
)

if TYPE_CHECKING:
    from blobstore.infra.storage.registry import StorageRegistry

logger = logging.getLogger(__name__)

BACKEND_NAME = "Disk"
BASE_PATH_KEY = "basePath"


class DiskStorage:
    """Blob storage in a local directory."""

    def __init__(self, base_path: str | os.PathLike[str]) -> None:
        self._root: Path | None = Path(base_path)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(
                f"unable to create storage directory {str(base_path)!r}: {exc}",
                op="disk.new",
            ) from exc

    def _require_root(self, op: str, ref: str | None = None) -> Path:
        if self._root is None:
            raise StorageIOError("storage is closed", op=op, ref=ref)
        return self._root

    def _path_for(self, root: Path, ref: str, op: str) -> Path:
        if ref in ("", ".", ".."):
            raise StorageIOError(f"invalid ref {ref!r}", op=op, ref=ref)
        return root / quote(ref, safe="")

    def link_base(self) -> str:
        root = self._require_root("disk.link_base")
        return root.resolve().as_uri() + "/"

    def put(self, ref: str, data: bytes) -> None:
        op = "disk.put"
        root = self._require_root(op, ref)
        target = self._path_for(root, ref, op)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=root, prefix=".put-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageIOError(
                f"unable to write ref {ref!r} under {str(root)!r}: {exc}",
                op=op,
                ref=ref,
            ) from exc

    def download(self, ref: str) -> bytes:
        op = "disk.download"
        root = self._require_root(op, ref)
        try:
            return self._path_for(root, ref, op).read_bytes()
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(
                f"ref {ref!r} not found under {str(root)!r}", op=op, ref=ref
            ) from exc
        except OSError as exc:
            raise StorageIOError(
                f"unable to read ref {ref!r} under {str(root)!r}: {exc}",
                op=op,
                ref=ref,
            ) from exc

    def delete(self, ref: str) -> None:
        op = "disk.delete"
        root = self._require_root(op, ref)
        try:
            self._path_for(root, ref, op).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageIOError(
                f"unable to delete ref {ref!r} under {str(root)!r}: {exc}",
                op=op,
                ref=ref,
            ) from exc

    def close(self) -> None:
        self._root = None


def new(opts: Mapping[str, str]) -> DiskStorage:
    base_path = opts.get(BASE_PATH_KEY)
    if not base_path:
        raise InvalidConfigError(f"{BASE_PATH_KEY!r} option is required", op="disk.new")
    return DiskStorage(base_path)


def register(registry: "StorageRegistry") -> None:
    registry.register(BACKEND_NAME, new)
