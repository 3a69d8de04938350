"""
Photo processing pipeline and run supervision.

A run takes one photo from ``pending`` through five ``processing`` stages
(10, 30, 50, 70 and 90 percent) to ``completed`` or ``failed``, recording an
event at each step. The stage delays stand in for real work and the outcome
is drawn with a configurable success probability.

Runs are started with ``PhotoProcessor.start``, which spawns an asyncio task
and returns it. ``run`` never raises for processing errors: every failure is
recorded on the photo and reported through the ``ProcessingResult``. Only
cancellation propagates.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from .image_metadata import ImageProbe, get_image_metadata, probe_image
from .models import EventKind, Photo, PhotoStatus
from .repositories import EventRepository, PhotoRepository
from .storage import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_PROBABILITY = 0.95
DEFAULT_FAILURE_REASON = "Processing failed due to quality issues"


@dataclass(frozen=True)
class ProcessingStage:
    progress: int
    event: EventKind
    label: Optional[str]
    delay: float


STAGES = (
    ProcessingStage(10, EventKind.PROCESSING_STARTED, None, 0.5),
    ProcessingStage(30, EventKind.PROGRESS_UPDATE, "analyzing", 0.8),
    ProcessingStage(50, EventKind.PROGRESS_UPDATE, "filtering", 0.7),
    ProcessingStage(70, EventKind.PROGRESS_UPDATE, "optimizing", 0.6),
    ProcessingStage(90, EventKind.PROGRESS_UPDATE, "finalizing", 0.4),
)


class ProcessingOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ProcessingResult:
    """
    How a run ended.

    Attributes:
        photo_id: The processed photo
        outcome: ``completed``, ``failed``, or ``aborted`` when the photo was deleted mid-run
        error: Failure reason recorded on the photo, if any
    """

    photo_id: str
    outcome: ProcessingOutcome
    error: Optional[str] = None


class PhotoProcessor:
    """
    Runs the processing state machine and keeps track of active runs.

    Args:
        photos: Repository used for every status and progress change
        events: Repository receiving one event per transition
        store: Store that locates uploaded files
        probe: Image inspection routine used for completed photos
        success_probability: Chance that a run completes instead of failing
        time_scale: Multiplier applied to every stage delay (0 disables waiting)
        failure_reason: Error message recorded on photos that fail
        rng: Random source for the outcome draw
        sleep: Awaitable delay function
    """

    def __init__(
        self,
        photos: PhotoRepository,
        events: EventRepository,
        store: DocumentStore,
        probe: ImageProbe = probe_image,
        success_probability: float = DEFAULT_SUCCESS_PROBABILITY,
        time_scale: float = 1.0,
        failure_reason: str = DEFAULT_FAILURE_REASON,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not 0.0 <= success_probability <= 1.0:
            raise ValueError(f"success_probability must be between 0 and 1, got {success_probability}")
        if time_scale < 0:
            raise ValueError(f"time_scale must not be negative, got {time_scale}")

        self.photos = photos
        self.events = events
        self.store = store
        self.probe = probe
        self.success_probability = success_probability
        self.time_scale = time_scale
        self.failure_reason = failure_reason
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._runs: Set[asyncio.Task[ProcessingResult]] = set()

    def start(self, photo_id: str) -> asyncio.Task[ProcessingResult]:
        """
        Launch a run in the background and return its task.

        The processor keeps a reference to the task until it finishes, so the
        caller may drop the handle.
        """
        task = asyncio.create_task(self.run(photo_id), name=f"process-photo-{photo_id}")
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    def active_runs(self) -> int:
        return len(self._runs)

    async def wait_idle(self) -> None:
        """Wait until every run started so far has finished."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all active runs and wait for them to unwind."""
        runs = list(self._runs)
        for task in runs:
            task.cancel()
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)
            logger.info("Cancelled %d active processing run(s)", len(runs))

    async def run(self, photo_id: str) -> ProcessingResult:
        logger.info("Starting photo processing for %s", photo_id)
        try:
            return await self._process(photo_id)
        except asyncio.CancelledError:
            logger.warning("Processing of %s cancelled", photo_id)
            raise
        except Exception as exc:
            logger.exception("Error during processing of %s", photo_id)
            return await self._record_crash(photo_id, exc)

    async def _process(self, photo_id: str) -> ProcessingResult:
        for stage in STAGES:
            await self.photos.update_progress(photo_id, stage.progress, PhotoStatus.PROCESSING)
            if stage.label is None:
                details = {"status": PhotoStatus.PROCESSING.value, "progress": stage.progress}
            else:
                details = {"progress": stage.progress, "stage": stage.label}
            await self.events.create(photo_id, stage.event, details)
            await self._sleep(stage.delay * self.time_scale)

        success = self._rng.random() < self.success_probability

        photo = await self.photos.find_by_id(photo_id)
        if photo is None:
            logger.warning("Photo %s disappeared during processing", photo_id)
            return ProcessingResult(photo_id, ProcessingOutcome.ABORTED)

        if success:
            return await self._complete(photo)
        return await self._fail(photo)

    async def _complete(self, photo: Photo) -> ProcessingResult:
        metadata = await get_image_metadata(self.store.upload_path(photo.filename), self.probe)
        updated = await self.photos.update(
            photo.id,
            {
                "status": PhotoStatus.COMPLETED,
                "progress": 100,
                "processed_url": photo.url,
                "metadata": metadata,
                "error": None,
            },
        )
        if updated is None:
            logger.warning("Photo %s deleted before completion was recorded", photo.id)
            return ProcessingResult(photo.id, ProcessingOutcome.ABORTED)

        await self.events.create(
            photo.id,
            EventKind.PROCESSING_COMPLETED,
            {"status": PhotoStatus.COMPLETED.value, "progress": 100},
        )
        logger.info("Photo processing completed for %s (%s): %s", photo.id, photo.original_name, metadata.model_dump())
        return ProcessingResult(photo.id, ProcessingOutcome.COMPLETED)

    async def _fail(self, photo: Photo) -> ProcessingResult:
        updated = await self._mark_failed(photo.id, self.failure_reason)
        if updated is None:
            logger.warning("Photo %s deleted before failure was recorded", photo.id)
            return ProcessingResult(photo.id, ProcessingOutcome.ABORTED)

        logger.warning("Photo processing failed for %s (%s)", photo.id, photo.original_name)
        return ProcessingResult(photo.id, ProcessingOutcome.FAILED, self.failure_reason)

    async def _mark_failed(self, photo_id: str, error: str) -> Optional[Photo]:
        updated = await self.photos.update(
            photo_id,
            {"status": PhotoStatus.FAILED, "progress": 0, "error": error},
        )
        if updated is not None:
            await self.events.create(
                photo_id,
                EventKind.PROCESSING_FAILED,
                {"status": PhotoStatus.FAILED.value, "error": error},
            )
        return updated

    async def _record_crash(self, photo_id: str, exc: Exception) -> ProcessingResult:
        error = str(exc) or exc.__class__.__name__
        try:
            updated = await self._mark_failed(photo_id, error)
        except Exception:
            logger.exception("Failed to mark photo %s as failed", photo_id)
            return ProcessingResult(photo_id, ProcessingOutcome.FAILED, error)
        if updated is None:
            logger.warning("Photo %s deleted before the error was recorded: %s", photo_id, error)
            return ProcessingResult(photo_id, ProcessingOutcome.ABORTED)
        return ProcessingResult(photo_id, ProcessingOutcome.FAILED, error)
