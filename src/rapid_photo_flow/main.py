from __future__ import annotations

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .app_logging import configure_logging
from .models import (
    EventList,
    FileDescriptor,
    HealthStatus,
    Photo,
    PhotoList,
    PhotoStatus,
    StatsSummary,
    UploadResult,
    utcnow,
)
from .photo_manager import PhotoManager
from .repositories import DEFAULT_EVENT_LIMIT
from .utils import is_allowed_image, unique_filename

photo_manager = PhotoManager()
settings = photo_manager.settings
configure_logging(settings.logging.level)
photo_manager.ensure_directories()

_STARTED_AT = time.monotonic()
_CHUNK_SIZE = 1024 * 1024


@asynccontextmanager
async def lifespan(_: FastAPI):
    await photo_manager.startup()
    try:
        yield
    finally:
        await photo_manager.shutdown()


app = FastAPI(title="RapidPhotoFlow API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(settings.uploads.url_prefix, StaticFiles(directory=photo_manager.upload_root), name="uploads")

router = APIRouter(prefix="/api")


def get_photo_manager() -> PhotoManager:
    return photo_manager


@router.get("/health", response_model=HealthStatus)
def healthcheck() -> HealthStatus:
    return HealthStatus(status="ok", timestamp=utcnow(), uptime=time.monotonic() - _STARTED_AT)


async def _store_upload(file: UploadFile, upload_root: Path, max_size: int) -> FileDescriptor:
    filename = unique_filename(file.filename or "")
    destination = upload_root / filename

    size = 0
    with destination.open("wb") as buffer:
        while chunk := await file.read(_CHUNK_SIZE):
            size += len(chunk)
            if size > max_size:
                break
            buffer.write(chunk)
    await file.close()

    if size > max_size:
        destination.unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail=f"File too large (max {max_size // (1024 * 1024)}MB)")

    return FileDescriptor(
        filename=filename,
        original_name=file.filename or filename,
        size=size,
        mimetype=file.content_type or "application/octet-stream",
    )


@router.post("/photos/upload", response_model=UploadResult, response_model_exclude_none=True, status_code=201)
async def upload_photos(
    photos: Optional[List[UploadFile]] = File(None),
    manager: PhotoManager = Depends(get_photo_manager),
) -> UploadResult:
    if not photos:
        raise HTTPException(status_code=400, detail="No files uploaded")

    limits = manager.settings.uploads
    if len(photos) > limits.max_files:
        raise HTTPException(status_code=400, detail=f"Too many files (max {limits.max_files})")

    for upload in photos:
        if not upload.filename or not is_allowed_image(upload.filename, upload.content_type, limits.allowed_extensions):
            raise HTTPException(status_code=400, detail="Only image files allowed")

    descriptors: List[FileDescriptor] = []
    try:
        for upload in photos:
            descriptors.append(await _store_upload(upload, manager.upload_root, limits.max_file_size))
    except Exception:
        # A rejected batch registers nothing, so drop the files already stored.
        for descriptor in descriptors:
            (manager.upload_root / descriptor.filename).unlink(missing_ok=True)
        raise

    created = [await manager.register_upload(descriptor) for descriptor in descriptors]
    return UploadResult(message="Photos uploaded successfully", photos=created)


@router.get("/photos", response_model=PhotoList, response_model_exclude_none=True)
async def list_photos(
    status: Optional[PhotoStatus] = None,
    manager: PhotoManager = Depends(get_photo_manager),
) -> PhotoList:
    photos = await manager.list_photos(status)
    return PhotoList(photos=photos, total=len(photos))


@router.get("/photos/{photo_id}", response_model=Photo, response_model_exclude_none=True)
async def get_photo(photo_id: str, manager: PhotoManager = Depends(get_photo_manager)) -> Photo:
    photo = await manager.get_photo(photo_id)
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")
    return photo


@router.delete("/photos/{photo_id}")
async def delete_photo(photo_id: str, manager: PhotoManager = Depends(get_photo_manager)) -> dict:
    photo = await manager.delete_photo(photo_id)
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")
    return {"message": "Photo deleted successfully"}


@router.get("/events", response_model=EventList)
async def list_events(
    photo_id: Optional[str] = Query(None, alias="photoId"),
    limit: int = Query(DEFAULT_EVENT_LIMIT, ge=0),
    manager: PhotoManager = Depends(get_photo_manager),
) -> EventList:
    events = await manager.list_events(photo_id, limit)
    return EventList(events=events, total=len(events))


@router.get("/stats", response_model=StatsSummary)
async def get_stats(manager: PhotoManager = Depends(get_photo_manager)) -> StatsSummary:
    return await manager.stats()


@router.post("/reset")
async def reset_data(manager: PhotoManager = Depends(get_photo_manager)) -> dict:
    await manager.reset()
    return {"message": "All data cleared successfully"}


app.include_router(router)
