"""
JSON document store for photo and event persistence.

All state lives in one JSON file shaped ``{"photos": [...], "events": [...]}``.
Writes replace the whole file atomically (temp file, then rename), and reads
treat an unreadable file as an empty document so the service stays available.
The store owns the ``DocumentLock`` that repositories use to serialize their
read-modify-write cycles.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .locking import DocumentLock
from .models import Document
from .utils import ensure_directory

logger = logging.getLogger(__name__)

DEFAULT_DB_FILE = Path("database.json")
DEFAULT_UPLOAD_DIR = Path("uploads")


class DocumentStore:
    """
    Single-file snapshot store.

    Blocking filesystem calls run in a worker thread, so every ``read`` and
    ``write`` is a suspension point for the event loop. Only ``write`` and
    ``reset`` mutate the file; callers are expected to hold ``self.lock``
    around a read-modify-write cycle.
    """

    def __init__(
        self,
        db_file: Path = DEFAULT_DB_FILE,
        upload_dir: Path = DEFAULT_UPLOAD_DIR,
        lock: Optional[DocumentLock] = None,
    ) -> None:
        self.db_file = Path(db_file)
        self.upload_dir = Path(upload_dir)
        self.lock = lock or DocumentLock()

    @property
    def temp_file(self) -> Path:
        return self.db_file.with_name(f"{self.db_file.name}.tmp")

    def upload_path(self, filename: str) -> Path:
        return self.upload_dir / filename

    async def initialize(self) -> None:
        """Create the upload directory and a fresh document if the current one is missing or unreadable."""
        await asyncio.to_thread(self._initialize_sync)

    def _initialize_sync(self) -> None:
        ensure_directory(self.upload_dir)
        ensure_directory(self.db_file.parent)
        try:
            json.loads(self.db_file.read_text(encoding="utf-8"))
            logger.info("Database file found at %s", self.db_file)
        except (OSError, ValueError):
            self._write_sync(_dump(Document()))
            logger.info("Database file created at %s", self.db_file)

    async def read(self) -> Document:
        """
        Load the current document.

        Missing, empty or corrupt content yields an empty document instead of
        an error.
        """
        return await asyncio.to_thread(self._read_sync)

    def _read_sync(self) -> Document:
        try:
            content = self.db_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Document()
        except UnicodeDecodeError as exc:
            logger.error("Database %s is not valid UTF-8: %s", self.db_file, exc)
            return Document()
        except OSError:
            logger.exception("Failed to read database %s", self.db_file)
            return Document()

        if not content.strip():
            logger.warning("Empty database file %s, treating as empty document", self.db_file)
            return Document()

        try:
            return Document.model_validate_json(content)
        except ValidationError as exc:
            logger.error("Failed to parse database %s: %s", self.db_file, exc)
            return Document()

    async def write(self, document: Document) -> None:
        """
        Persist the whole document.

        The content is written to ``<db_file>.tmp`` and renamed over the
        canonical path, so readers never observe a partial file. Errors are
        logged and re-raised.

        A caller cancelled mid-write stays suspended until the worker thread
        has finished, so the lock it holds is not released while
        ``<db_file>.tmp`` is still being written.
        """
        payload = _dump(document)
        pending = asyncio.ensure_future(asyncio.to_thread(self._write_sync, payload))
        try:
            await asyncio.shield(pending)
        except asyncio.CancelledError:
            await asyncio.wait({pending})
            if not pending.cancelled() and pending.exception() is not None:
                logger.error("Failed to write database %s: %s", self.db_file, pending.exception())
            raise
        except Exception:
            logger.exception("Failed to write database %s", self.db_file)
            raise

    def _write_sync(self, payload: str) -> None:
        temp_file = self.temp_file
        temp_file.write_text(payload, encoding="utf-8")
        os.replace(temp_file, self.db_file)

    async def clear_uploads(self) -> int:
        """Delete every file in the upload directory, skipping files that cannot be removed."""
        return await asyncio.to_thread(self._clear_uploads_sync)

    def _clear_uploads_sync(self) -> int:
        if not self.upload_dir.exists():
            return 0
        removed = 0
        for entry in self.upload_dir.iterdir():
            try:
                entry.unlink()
                removed += 1
            except OSError as exc:
                logger.debug("Could not remove %s: %s", entry, exc)
        return removed

    async def reset(self) -> None:
        """Replace the document with an empty one and clear stored uploads."""
        async with self.lock:
            await self.write(Document())
        await self.clear_uploads()


def _dump(document: Document) -> str:
    data = document.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(data, indent=2)
