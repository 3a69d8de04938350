"""
Photo lifecycle coordination.

This module ties the document store, the repositories and the processing
pipeline together for the HTTP layer:
- Registering stored uploads and launching their processing runs
- Deleting photos together with their stored files
- Resetting all data
- Aggregated statistics

The PhotoManager class is the only place where these collaborators are
constructed, so tests can build independent managers on temporary paths.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from omegaconf import DictConfig

from .configuration import load_settings
from .image_metadata import ImageProbe, probe_image
from .models import Event, EventKind, FileDescriptor, Photo, PhotoStatus, StatsSummary
from .processor import PhotoProcessor
from .repositories import DEFAULT_EVENT_LIMIT, EventRepository, PhotoRepository
from .storage import DocumentStore
from .utils import ensure_directory

logger = logging.getLogger(__name__)


class PhotoManager:
    """
    Central coordinator for photo uploads, processing and removal.

    Attributes:
        settings: Resolved configuration
        store: Document store shared by both repositories
        photos: Photo repository
        events: Event repository
        processor: Pipeline that processes uploaded photos
    """

    def __init__(self, settings: Optional[DictConfig] = None, probe: ImageProbe = probe_image) -> None:
        """
        Initialize the manager.

        Args:
            settings: Configuration from ``load_settings`` (defaults when omitted)
            probe: Image inspection routine passed to the processor
        """
        self.settings = settings if settings is not None else load_settings()
        self.store = DocumentStore(
            db_file=Path(self.settings.storage.db_file),
            upload_dir=Path(self.settings.storage.upload_dir),
        )
        self.photos = PhotoRepository(self.store, url_prefix=self.settings.uploads.url_prefix)
        self.events = EventRepository(self.store)
        self.processor = PhotoProcessor(
            photos=self.photos,
            events=self.events,
            store=self.store,
            probe=probe,
            success_probability=float(self.settings.processing.success_probability),
            time_scale=float(self.settings.processing.time_scale),
            failure_reason=self.settings.processing.failure_reason,
        )

    @property
    def upload_root(self) -> Path:
        return self.store.upload_dir

    def ensure_directories(self) -> None:
        ensure_directory(self.store.upload_dir)
        ensure_directory(self.store.db_file.parent)

    async def startup(self) -> None:
        await self.store.initialize()

    async def shutdown(self) -> None:
        await self.processor.shutdown()

    async def register_upload(self, descriptor: FileDescriptor) -> Photo:
        """
        Record a stored upload and start processing it.

        The upload event is written before the run is launched; the run is
        not awaited.

        Returns:
            The newly created photo in ``pending`` state
        """
        photo = await self.photos.create(descriptor)
        logger.info("Photo uploaded: %s (%s)", photo.id, descriptor.original_name)

        await self.events.create(
            photo.id,
            EventKind.PHOTO_UPLOADED,
            {"filename": photo.original_name, "size": photo.size},
        )
        self.processor.start(photo.id)
        return photo

    async def list_photos(self, status: Optional[PhotoStatus] = None) -> List[Photo]:
        return await self.photos.find_all(status)

    async def get_photo(self, photo_id: str) -> Optional[Photo]:
        return await self.photos.find_by_id(photo_id)

    async def list_events(self, photo_id: Optional[str] = None, limit: int = DEFAULT_EVENT_LIMIT) -> List[Event]:
        return await self.events.find_all(photo_id, limit)

    async def delete_photo(self, photo_id: str) -> Optional[Photo]:
        """
        Delete a photo record and its stored file.

        A processing run still in flight for this photo keeps going, but its
        remaining updates find nothing to change.

        Returns:
            The removed photo, or ``None`` if it did not exist
        """
        photo = await self.photos.delete(photo_id)
        if photo is None:
            return None

        try:
            await asyncio.to_thread(self.store.upload_path(photo.filename).unlink)
        except OSError as exc:
            logger.warning("File delete failed for %s: %s", photo.filename, exc)

        await self.events.create(photo_id, EventKind.PHOTO_DELETED, {"filename": photo.original_name})
        logger.info("Photo deleted: %s", photo_id)
        return photo

    async def reset(self) -> None:
        await self.store.reset()
        logger.info("All data cleared")

    async def stats(self) -> StatsSummary:
        photo_stats = await self.photos.get_stats()
        total_events = await self.events.count()
        return StatsSummary(**photo_stats.model_dump(), total_events=total_events)
