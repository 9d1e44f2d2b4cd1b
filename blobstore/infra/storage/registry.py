"""Named storage backend factories.

The server builds one registry during startup and registers every backend
it links explicitly; nothing registers itself on import.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping

from blobstore.infra.storage.client import InvalidConfigError, Storage

logger = logging.getLogger(__name__)

StorageFactory = Callable[[Mapping[str, str]], Storage]


class StorageRegistry:
    """Maps backend names to the factories that construct them."""

    def __init__(self) -> None:
        self._factories: dict[str, StorageFactory] = {}

    def register(self, name: str, factory: StorageFactory) -> None:
        if not name:
            raise ValueError("backend name must not be empty")
        if name in self._factories:
            raise ValueError(f"storage backend {name!r} is already registered")
        self._factories[name] = factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def dial(self, name: str, opts: Mapping[str, str] | None = None) -> Storage:
        """Construct the backend registered under ``name`` from ``opts``.

        Raises:
            InvalidConfigError: If no backend is registered under ``name`` or
                the backend rejects the options.
        """
        factory = self._factories.get(name)
        if factory is None:
            known = ", ".join(self.names()) or "<none>"
            raise InvalidConfigError(
                f"unknown storage backend {name!r} (known: {known})",
                op="storage.dial",
            )
        storage = factory(dict(opts or {}))
        logger.info("storage_dialed backend=%s", name)
        return storage

    def __contains__(self, name: object) -> bool:
        return name in self._factories


def default_registry() -> StorageRegistry:
    """Registry with every backend shipped in this package."""
    from blobstore.infra.storage import disk_client, s3_client

    registry = StorageRegistry()
    s3_client.register(registry)
    disk_client.register(registry)
    return registry
