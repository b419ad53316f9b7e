"""
api/routes/v1/uploads.py -- Authenticated file upload.

  POST /api/v1/uploads   multipart/form-data, field "file" -> 201 + stored-file metadata

Size enforcement happens twice:
  1. limit_upload_body (HTTP middleware) refuses a request whose declared
     Content-Length cannot fit under FileStore.max_size plus multipart framing,
     with 413, before the multipart parser reads any of the body.
  2. The handler reads at most max_size + 1 bytes of the parsed part and
     FileStore.save() rejects anything over max_size with 400. This catches
     bodies sent without a Content-Length, which the parser has already spooled.

The disk write runs in the threadpool to keep the event loop free.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api import responses
from auth.dependencies import get_current_identity
from uploads.store import FileStore

UPLOADS_PREFIX = "/api/v1/uploads"

# Boundaries, part headers and small companion form fields.
MULTIPART_OVERHEAD = 64 * 1024

router = APIRouter(dependencies=[Depends(get_current_identity)])


async def limit_upload_body(request: Request, call_next):
    """Reject an oversized upload from its Content-Length header alone."""
    if request.method == "POST" and request.url.path.rstrip("/") == UPLOADS_PREFIX:
        declared = request.headers.get("content-length", "")
        store: FileStore = request.app.state.file_store
        if declared.isdigit() and int(declared) > store.max_size + MULTIPART_OVERHEAD:
            return responses.error(request, "File too large", status_code=413)
    return await call_next(request)


@router.post("", status_code=201)
async def upload_file(request: Request, file: UploadFile = File(...)) -> JSONResponse:
    store: FileStore = request.app.state.file_store
    data = await file.read(store.max_size + 1)
    stored = await run_in_threadpool(
        store.save,
        file.filename or "",
        file.content_type or "application/octet-stream",
        data,
    )
    return responses.created(
        request,
        {
            "originalName": stored.original_name,
            "filename": stored.filename,
            "size": stored.size,
            "mimetype": stored.mimetype,
            "extension": stored.extension,
            "url": stored.url,
        },
    )
