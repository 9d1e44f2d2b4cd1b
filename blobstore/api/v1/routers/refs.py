"""Ref API router.

Stores, serves and deletes blobs by ref through the configured storage
backend. Request and response bodies are raw bytes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from starlette.concurrency import run_in_threadpool

from blobstore.api.v1.deps import get_backend_name, get_storage
from blobstore.api.v1.schemas.refs import LinkBaseOut
from blobstore.infra.observability.metrics import STORAGE_BYTES, observe_storage
from blobstore.infra.storage.client import Storage

router = APIRouter()


@router.get(
    "/linkbase",
    response_model=LinkBaseOut,
    summary="Base URL of stored refs",
)
def get_link_base(
    storage: Storage = Depends(get_storage),
    backend: str = Depends(get_backend_name),
) -> LinkBaseOut:
    with observe_storage(backend, "link_base"):
        link_base = storage.link_base()
    return LinkBaseOut(backend=backend, link_base=link_base)


@router.put(
    "/refs/{ref:path}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Store a blob",
    description="Store the raw request body under the ref, replacing any previous blob.",
)
async def put_ref(
    ref: str,
    request: Request,
    storage: Storage = Depends(get_storage),
    backend: str = Depends(get_backend_name),
) -> Response:
    data = await request.body()
    with observe_storage(backend, "put"):
        await run_in_threadpool(storage.put, ref, data)
    STORAGE_BYTES.labels(backend, "in").inc(len(data))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/refs/{ref:path}",
    response_class=Response,
    summary="Download a blob",
    responses={404: {"description": "Ref not found"}},
)
def download_ref(
    ref: str,
    storage: Storage = Depends(get_storage),
    backend: str = Depends(get_backend_name),
) -> Response:
    with observe_storage(backend, "download"):
        data = storage.download(ref)
    STORAGE_BYTES.labels(backend, "out").inc(len(data))
    return Response(content=data, media_type="application/octet-stream")


@router.delete(
    "/refs/{ref:path}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a blob",
    description="Deleting a ref that was never written also succeeds.",
)
def delete_ref(
    ref: str,
    storage: Storage = Depends(get_storage),
    backend: str = Depends(get_backend_name),
) -> Response:
    with observe_storage(backend, "delete"):
        storage.delete(ref)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
