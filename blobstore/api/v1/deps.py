from __future__ import annotations

import logging

from fastapi import Header, HTTPException, Request

from blobstore.common.config import get_settings
from blobstore.infra.storage.client import Storage

logger = logging.getLogger("http")


def get_storage(request: Request) -> Storage:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(
            status_code=503,
            detail={"message": "Storage backend is not available", "error_code": "storage_unavailable"},
        )
    return storage


def get_backend_name(request: Request) -> str:
    return getattr(request.app.state, "storage_backend", "unknown")


def require_api_key(
    request: Request, x_api_key: str | None = Header(default=None)
) -> None:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    if settings.API_KEY_ENABLED:
        api_key_expected = getattr(settings, "API_KEY", None)
        if not x_api_key or (api_key_expected and x_api_key != api_key_expected):
            preview = f"{x_api_key[:4]}***" if x_api_key else "<missing>"
            logger.warning("api_key_mismatch api_key_preview=%s", preview)
            raise HTTPException(status_code=401, detail="Invalid API key")
