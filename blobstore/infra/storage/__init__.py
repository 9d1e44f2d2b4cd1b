"""Blob storage abstraction layer.

This module provides a protocol-based abstraction for blob storage backends,
with implementations for S3-compatible services and the local disk.
"""

from .client import (
    InvalidConfigError,
    LifecycleManaged,
    ObjectNotFoundError,
    Storage,
    StorageError,
    StorageIOError,
    supports_lifecycle,
)
from .registry import StorageRegistry, default_registry

__all__ = [
    "InvalidConfigError",
    "LifecycleManaged",
    "ObjectNotFoundError",
    "Storage",
    "StorageError",
    "StorageIOError",
    "StorageRegistry",
    "default_registry",
    "supports_lifecycle",
]
