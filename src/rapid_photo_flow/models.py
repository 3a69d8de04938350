from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys, matching the stored document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PhotoStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventKind(str, Enum):
    PHOTO_UPLOADED = "photo_uploaded"
    PROCESSING_STARTED = "processing_started"
    PROGRESS_UPDATE = "progress_update"
    PROCESSING_COMPLETED = "processing_completed"
    PROCESSING_FAILED = "processing_failed"
    PHOTO_DELETED = "photo_deleted"


class PhotoMetadata(CamelModel):
    dimensions: str
    size: str
    format: str


class FileDescriptor(CamelModel):
    """What the upload handler knows about a stored file."""

    filename: str
    original_name: str
    size: int
    mimetype: str


class Photo(CamelModel):
    id: str
    filename: str
    original_name: str
    url: str
    size: int
    mimetype: str
    status: PhotoStatus = PhotoStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None
    processed_url: Optional[str] = None
    metadata: Optional[PhotoMetadata] = None
    created_at: datetime
    updated_at: datetime


class Event(CamelModel):
    id: str
    photo_id: str
    event: EventKind
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class Document(CamelModel):
    photos: List[Photo] = Field(default_factory=list)
    events: List[Event] = Field(default_factory=list)


class PhotoStats(CamelModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int


class StatsSummary(PhotoStats):
    total_events: int


class PhotoList(CamelModel):
    photos: List[Photo]
    total: int


class EventList(CamelModel):
    events: List[Event]
    total: int


class UploadResult(CamelModel):
    message: str
    photos: List[Photo]


class HealthStatus(CamelModel):
    status: str
    timestamp: datetime
    uptime: float
