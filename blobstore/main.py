import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from blobstore.api.v1.deps import require_api_key
from blobstore.api.v1.routers.refs import router as refs_router
from blobstore.api.v1.schemas.refs import ReadyOut
from blobstore.common.config import Settings, get_settings
from blobstore.common.logging import setup_logging
from blobstore.infra.observability.metrics import metrics_app
from blobstore.infra.observability.middleware import MetricsMiddleware
from blobstore.infra.storage.client import (
    InvalidConfigError,
    ObjectNotFoundError,
    Storage,
    StorageError,
    StorageIOError,
)
from blobstore.infra.storage.registry import StorageRegistry, default_registry

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}


def _normalize_detail(detail):
    if isinstance(detail, dict):
        maybe_code = detail.get("error_code")
        cleaned = {k: v for k, v in detail.items() if k != "error_code"}
        if len(cleaned) == 1 and "message" in cleaned:
            cleaned = cleaned["message"]
        if not cleaned:
            cleaned = None
        return cleaned, maybe_code if isinstance(maybe_code, str) else None
    return detail, None


def _resolve_error_code(status_code: int, override: str | None = None) -> str:
    if override:
        return override
    if status_code == 422:
        return "validation_error"
    return ERROR_CODE_BY_STATUS.get(status_code, "unknown_error")


def _storage_error_status(exc: StorageError) -> tuple[int, str, str]:
    """Map a storage error to (status, error_code, client-facing detail).

    Backend messages stay in the server log; clients only see the ref.
    """
    if isinstance(exc, ObjectNotFoundError):
        return 404, "not_found", f"ref {exc.ref!r} not found"
    if isinstance(exc, InvalidConfigError):
        return 500, "storage_misconfigured", "storage backend is misconfigured"
    if isinstance(exc, StorageIOError):
        return 502, "storage_io_error", "storage backend request failed"
    return 500, "storage_error", "storage operation failed"


def _problem(request: Request, *, status: int, title: str, detail, error_code: str):
    return JSONResponse(
        status_code=status,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": title,
            "status": status,
            "detail": detail,
            "error_code": error_code,
            "instance": str(request.url),
            "request_id": request.headers.get("X-Request-Id"),
        },
    )


def create_app(
    settings: Settings | None = None,
    *,
    storage: Storage | None = None,
    registry: StorageRegistry | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)
    app = FastAPI(
        title="Blob Store Service",
        version="v1.0",
        description="Stores opaque blobs by ref on a pluggable storage backend",
    )
    app.state.settings = settings
    app.state.storage = storage
    app.state.storage_backend = settings.STORAGE_BACKEND

    app.include_router(
        refs_router,
        prefix="/api/v1",
        tags=["refs"],
        dependencies=[Depends(require_api_key)],
    )

    # Metrics
    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)
        app.mount("/metrics", metrics_app)

    @app.on_event("startup")
    def on_startup() -> None:
        startup_logger = logging.getLogger("blobstore.startup")
        if app.state.storage is not None:
            startup_logger.info(
                "使用注入的存储后端。[event=storage_injected] (backend=%s)",
                app.state.storage_backend,
            )
            return
        backends = registry or default_registry()
        try:
            app.state.storage = backends.dial(
                settings.STORAGE_BACKEND, settings.STORAGE_OPTS
            )
        except StorageError as exc:
            startup_logger.error(
                "无法初始化存储后端，应用启动中断，请检查 STORE_CONFIG 或 SERVER_CONFIG。"
                " [event=storage_dial_failed] (backend=%s，error=%s)",
                settings.STORAGE_BACKEND,
                exc,
            )
            raise
        startup_logger.info(
            "存储后端已就绪。[event=storage_ready] (backend=%s，options=%s)",
            settings.STORAGE_BACKEND,
            ",".join(sorted(settings.STORAGE_OPTS)) or "-",
        )

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        if app.state.storage is not None:
            app.state.storage.close()
            app.state.storage = None

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger = logging.getLogger("http")
        normalized_detail, code_override = _normalize_detail(exc.detail)
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "http_exception status=%s detail=%s method=%s path=%s request_id=%s",
            exc.status_code,
            normalized_detail,
            request.method,
            request.url.path,
            request.headers.get("X-Request-Id"),
            extra={
                "extra": {
                    "status": exc.status_code,
                    "detail": normalized_detail,
                    "method": request.method,
                    "route": request.url.path,
                    "request_id": request.headers.get("X-Request-Id"),
                }
            },
        )
        return _problem(
            request,
            status=exc.status_code,
            title="HTTP Error",
            detail=normalized_detail,
            error_code=_resolve_error_code(exc.status_code, code_override),
        )

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        logger = logging.getLogger("http")
        status, error_code, detail = _storage_error_status(exc)
        logger.log(
            logging.INFO if status == 404 else logging.ERROR,
            "storage_error status=%s op=%s ref=%s bucket=%s error=%s",
            status,
            exc.op,
            exc.ref,
            exc.bucket,
            exc,
            extra={
                "extra": {
                    "status": status,
                    "op": exc.op,
                    "ref": exc.ref,
                    "bucket": exc.bucket,
                    "request_id": request.headers.get("X-Request-Id"),
                }
            },
        )
        return _problem(
            request,
            status=status,
            title="Storage Error",
            detail=detail,
            error_code=error_code,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return _problem(
            request,
            status=422,
            title="Validation Error",
            # 确保可序列化
            detail=jsonable_encoder(exc.errors()),
            error_code=_resolve_error_code(422),
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/ready", response_model=ReadyOut, response_model_exclude_none=True)
    async def ready() -> ReadyOut:
        if app.state.storage is None:
            return ReadyOut(status="not_ready", detail="storage backend not initialized")
        return ReadyOut(status="ready", backend=app.state.storage_backend)

    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "blobstore.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        ssl_certfile=settings.TLS_CERT_FILE,
        ssl_keyfile=settings.TLS_KEY_FILE,
        log_config=None,
    )


if __name__ == "__main__":
    run()
