# ruff: noqa: B008

from typing import Literal

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_actor
from marketplace.core.security import Actor
from marketplace.database import get_db
from marketplace.schemas import StoredFileRead
from marketplace.services import file_store, lifecycle

router = APIRouter(prefix="/files", tags=["files"])

MAX_UPLOAD_BYTES = 25 * 1024 * 1024

UploadFolder = Literal["uploads", "purchase_orders", "invoices"]


@router.post("", response_model=StoredFileRead, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    folder: UploadFolder = Query("uploads"),
    actor: Actor = Depends(get_current_actor),
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    return file_store.write_file_bytes(
        filename=file.filename or "upload.bin",
        content=content,
        content_type=file.content_type,
        folder=folder,
    )


@router.get("/download")
def download_file(
    url: str = Query(..., min_length=8),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        path = file_store.resolve_local_path(url)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid file url")
    # Ownership is checked before existence so a 404 never confirms a path.
    lifecycle.assert_file_readable(db, actor, url)
    if not path.exists() or not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(
        path=str(path),
        media_type="application/octet-stream",
        filename=path.name,
    )
