from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Histogram, make_asgi_app

from blobstore.infra.storage.client import ObjectNotFoundError, StorageError

# 低基数标签：使用路由模板（如 /api/v1/refs/{ref:path}），避免 ref 导致高基数
REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency in seconds",
    ["method", "route"],
)

STORAGE_OPERATIONS = Counter(
    "storage_operations_total",
    "Storage backend operations",
    ["backend", "operation", "outcome"],
)

STORAGE_LATENCY = Histogram(
    "storage_operation_duration_seconds",
    "Storage backend operation latency in seconds",
    ["backend", "operation"],
)

STORAGE_BYTES = Counter(
    "storage_bytes_total",
    "Bytes moved through the storage backend",
    ["backend", "direction"],
)


@contextmanager
def observe_storage(backend: str, operation: str) -> Iterator[None]:
    """Record outcome and latency of one storage call."""
    start = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except ObjectNotFoundError:
        outcome = "not_found"
        raise
    except StorageError:
        outcome = "error"
        raise
    finally:
        STORAGE_OPERATIONS.labels(backend, operation, outcome).inc()
        STORAGE_LATENCY.labels(backend, operation).observe(time.perf_counter() - start)


# /metrics 端点 ASGI 应用
metrics_app = make_asgi_app()
