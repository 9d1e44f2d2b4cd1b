"""Storage backend protocol and error types.

This module defines the interface every blob storage backend implements:
store a blob by reference, download it, delete it and report the base URL
under which stored blobs are reachable.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""

    def __init__(
        self,
        message: str,
        *,
        op: str | None = None,
        ref: str | None = None,
        bucket: str | None = None,
    ) -> None:
        super().__init__(message)
        self.op = op
        self.ref = ref
        self.bucket = bucket

    def __str__(self) -> str:
        message = super().__str__()
        if self.op:
            return f"{self.op}: {message}"
        return message


class InvalidConfigError(StorageError):
    """Raised when backend options are missing or malformed."""


class ObjectNotFoundError(StorageError):
    """Raised by ``download`` when the referenced object does not exist."""


class StorageIOError(StorageError):
    """Raised for any other failure reported by the storage service."""


class Storage(Protocol):
    """Protocol defining the interface for blob storage backends.

    Implementations hold no per-call state, so a constructed backend may be
    shared between threads.
    """

    def link_base(self) -> str:
        """Return the base URL for stored refs, ending with a separator.

        The result is computed locally; no request is sent to the service.
        """
        ...

    def put(self, ref: str, data: bytes) -> None:
        """Store ``data`` under ``ref``, replacing any existing blob.

        Raises:
            StorageIOError: If the upload fails.
        """
        ...

    def download(self, ref: str) -> bytes:
        """Return the complete contents stored under ``ref``.

        Raises:
            ObjectNotFoundError: If nothing is stored under ``ref``.
            StorageIOError: If the download fails for any other reason.
        """
        ...

    def delete(self, ref: str) -> None:
        """Delete the blob stored under ``ref``.

        Deleting a ref that was never written succeeds.

        Raises:
            StorageIOError: If the service rejects the request.
        """
        ...

    def close(self) -> None:
        """Release the backend. Calling it twice is harmless."""
        ...


@runtime_checkable
class LifecycleManaged(Protocol):
    """Optional capability of backends that can create and drop their bucket."""

    def create_bucket(self) -> None: ...

    def delete_bucket(self) -> None: ...


def supports_lifecycle(storage: object) -> bool:
    return isinstance(storage, LifecycleManaged)
