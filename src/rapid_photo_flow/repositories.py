"""
Typed access to photos and events stored in the shared document.

Each mutating method is one critical section on the store's lock: it reads
the full document, changes it in memory and writes it back. Callers that make
several calls in a row (the processing pipeline) do not hold the lock between
them, so other mutations, including deletion of the same photo, can run in
between.

Read methods go straight to the store without queueing on the lock and may
observe the document just before or just after a concurrent write.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .models import Event, EventKind, FileDescriptor, Photo, PhotoStats, PhotoStatus, utcnow
from .storage import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_EVENT_LIMIT = 100


def _newest_first(items: List[Any], key) -> List[Any]:
    # Reversing before a stable descending sort puts later insertions first among equal timestamps.
    return sorted(reversed(items), key=key, reverse=True)


def _index_of(photos: List[Photo], photo_id: str) -> int:
    return next((index for index, photo in enumerate(photos) if photo.id == photo_id), -1)


class PhotoRepository:
    """
    CRUD operations for photo records.

    Attributes:
        store: Document store holding the records and the lock
        url_prefix: Path prefix under which stored files are served
    """

    def __init__(self, store: DocumentStore, url_prefix: str = "/uploads") -> None:
        self.store = store
        self.url_prefix = url_prefix.rstrip("/")

    async def create(self, descriptor: FileDescriptor) -> Photo:
        """
        Register a stored upload as a new pending photo.

        Args:
            descriptor: Stored filename, original name, size and media type

        Returns:
            The created photo with status ``pending`` and progress 0
        """
        now = utcnow()
        photo = Photo(
            id=str(uuid4()),
            filename=descriptor.filename,
            original_name=descriptor.original_name,
            url=f"{self.url_prefix}/{descriptor.filename}",
            size=descriptor.size,
            mimetype=descriptor.mimetype,
            status=PhotoStatus.PENDING,
            progress=0,
            created_at=now,
            updated_at=now,
        )

        async def _create() -> Photo:
            document = await self.store.read()
            document.photos.append(photo)
            await self.store.write(document)
            return photo

        return await self.store.lock.with_lock(_create)

    async def find_all(self, status: Optional[PhotoStatus] = None) -> List[Photo]:
        """Return photos newest first, optionally only those with the given status."""
        document = await self.store.read()
        photos = document.photos
        if status is not None:
            photos = [photo for photo in photos if photo.status == status]
        return _newest_first(photos, key=lambda photo: photo.created_at)

    async def find_by_id(self, photo_id: str) -> Optional[Photo]:
        document = await self.store.read()
        return next((photo for photo in document.photos if photo.id == photo_id), None)

    async def update_progress(self, photo_id: str, progress: int, status: PhotoStatus) -> Optional[Photo]:
        """
        Set progress and status of a photo.

        A photo deleted in the meantime is not an error: the call logs a
        warning, leaves the document untouched and returns ``None``.
        """
        return await self.update(photo_id, {"progress": progress, "status": status})

    async def update(self, photo_id: str, fields: Dict[str, Any]) -> Optional[Photo]:
        """
        Merge ``fields`` into an existing photo and refresh ``updated_at``.

        Args:
            photo_id: The photo to update
            fields: Attribute values keyed by field name (``None`` clears an optional field)

        Returns:
            The updated photo, or ``None`` if no photo has this id
        """

        async def _update() -> Optional[Photo]:
            document = await self.store.read()
            index = _index_of(document.photos, photo_id)
            if index == -1:
                logger.warning("Photo %s not found, skipping update of %s", photo_id, sorted(fields))
                return None

            current = document.photos[index]
            updated = Photo.model_validate({**current.model_dump(), **fields, "updated_at": utcnow()})
            document.photos[index] = updated
            await self.store.write(document)
            return updated

        return await self.store.lock.with_lock(_update)

    async def delete(self, photo_id: str) -> Optional[Photo]:
        """Remove a photo record and return it, or ``None`` if it does not exist."""

        async def _delete() -> Optional[Photo]:
            document = await self.store.read()
            index = _index_of(document.photos, photo_id)
            if index == -1:
                return None
            removed = document.photos.pop(index)
            await self.store.write(document)
            return removed

        return await self.store.lock.with_lock(_delete)

    async def get_stats(self) -> PhotoStats:
        document = await self.store.read()
        statuses = [photo.status for photo in document.photos]
        return PhotoStats(
            total=len(statuses),
            pending=statuses.count(PhotoStatus.PENDING),
            processing=statuses.count(PhotoStatus.PROCESSING),
            completed=statuses.count(PhotoStatus.COMPLETED),
            failed=statuses.count(PhotoStatus.FAILED),
        )


class EventRepository:
    """Append-only audit log of photo lifecycle transitions."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def create(self, photo_id: str, kind: EventKind, details: Optional[Dict[str, Any]] = None) -> Optional[Event]:
        """
        Append an event for ``photo_id``.

        Failures are logged and swallowed so that recording an event never
        aborts the operation being recorded; ``None`` is returned in that case.
        The photo id is not checked against existing photos.
        """
        event = Event(
            id=str(uuid4()),
            photo_id=photo_id,
            event=kind,
            details=dict(details or {}),
            timestamp=utcnow(),
        )

        async def _append() -> Event:
            document = await self.store.read()
            document.events.append(event)
            await self.store.write(document)
            return event

        try:
            return await self.store.lock.with_lock(_append)
        except Exception:
            logger.exception("Failed to add %s event for photo %s", kind.value, photo_id)
            return None

    async def find_all(self, photo_id: Optional[str] = None, limit: int = DEFAULT_EVENT_LIMIT) -> List[Event]:
        """Return at most ``limit`` events newest first, optionally for one photo only."""
        document = await self.store.read()
        events = document.events
        if photo_id:
            events = [event for event in events if event.photo_id == photo_id]
        return _newest_first(events, key=lambda event: event.timestamp)[: max(limit, 0)]

    async def count(self) -> int:
        document = await self.store.read()
        return len(document.events)
