"""
Tests for the JSON document store.
"""

import asyncio
import json
import threading

import pytest

from rapid_photo_flow import storage as storage_module
from rapid_photo_flow.models import Document, EventKind

pytestmark = pytest.mark.anyio


class TestInitialize:
    async def test_creates_empty_document_and_upload_dir(self, store):
        await store.initialize()

        assert store.upload_dir.is_dir()
        assert json.loads(store.db_file.read_text()) == {"photos": [], "events": []}

    async def test_keeps_existing_valid_document(self, store, photos, descriptor):
        await store.initialize()
        await photos.create(descriptor)

        await store.initialize()

        assert len((await store.read()).photos) == 1

    async def test_rewrites_unparseable_document(self, store):
        store.db_file.write_text("{not json")

        await store.initialize()

        assert json.loads(store.db_file.read_text()) == {"photos": [], "events": []}


class TestRead:
    async def test_missing_file_reads_as_empty(self, store):
        document = await store.read()
        assert document.photos == [] and document.events == []

    @pytest.mark.parametrize("content", ["", "   \n", "{broken", '{"photos": "nope"}', "[]"])
    async def test_invalid_content_reads_as_empty(self, store, content):
        store.db_file.write_text(content)

        document = await store.read()

        assert document == Document()

    async def test_undecodable_bytes_read_as_empty(self, store):
        store.db_file.write_bytes(b'{"photos": [], "events": [\xff\xfe]}')

        document = await store.read()

        assert document == Document()


class TestWrite:
    async def test_write_uses_camel_case_and_omits_unset_fields(self, store, photos, descriptor):
        photo = await photos.create(descriptor)

        raw = json.loads(store.db_file.read_text())
        stored = raw["photos"][0]

        assert stored["id"] == photo.id
        assert stored["originalName"] == "a.jpg"
        assert stored["url"] == "/uploads/stored-a.jpg"
        assert "error" not in stored
        assert "metadata" not in stored
        assert not store.temp_file.exists()

    async def test_crash_before_rename_keeps_previous_document(self, store, photos, descriptor, monkeypatch):
        """A failed rename leaves the committed document intact for the next read."""
        committed = await photos.create(descriptor)

        def crash(src, dst):
            raise OSError("simulated crash before rename")

        monkeypatch.setattr(storage_module.os, "replace", crash)

        with pytest.raises(OSError, match="simulated crash"):
            await photos.create(descriptor)

        monkeypatch.undo()
        document = await store.read()
        assert [photo.id for photo in document.photos] == [committed.id]
        assert store.temp_file.exists()

    async def test_write_failure_propagates_and_releases_lock(self, store, photos, descriptor, monkeypatch):
        async def failing_write(document):
            raise OSError("disk full")

        monkeypatch.setattr(store, "write", failing_write)

        with pytest.raises(OSError, match="disk full"):
            await photos.create(descriptor)
        assert not store.lock.locked()

    async def test_cancelled_writer_holds_lock_until_file_is_written(self, store, photos, descriptor, monkeypatch):
        """Cancelling a mutation mid-write does not let another writer at the temp file."""
        entered = threading.Event()
        gate = threading.Event()
        original = store._write_sync

        def gated_write(payload):
            entered.set()
            gate.wait(5)
            original(payload)

        monkeypatch.setattr(store, "_write_sync", gated_write)

        task = asyncio.create_task(photos.create(descriptor))
        assert await asyncio.to_thread(entered.wait, 5)
        task.cancel()
        for _ in range(5):
            await asyncio.sleep(0)

        assert store.lock.locked()
        assert not task.done()

        gate.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not store.lock.locked()
        assert not store.temp_file.exists()
        assert len((await store.read()).photos) == 1


class TestUploadsAndReset:
    async def test_clear_uploads_removes_files_and_skips_failures(self, store):
        store.upload_dir.mkdir(parents=True)
        (store.upload_dir / "one.jpg").write_bytes(b"1")
        (store.upload_dir / "two.png").write_bytes(b"2")
        (store.upload_dir / "nested").mkdir()

        removed = await store.clear_uploads()

        assert removed == 2
        assert [entry.name for entry in store.upload_dir.iterdir()] == ["nested"]

    async def test_clear_uploads_without_directory(self, store):
        assert await store.clear_uploads() == 0

    async def test_reset_empties_document_and_uploads(self, store, photos, events, descriptor, stored_file):
        photo = await photos.create(descriptor)
        await events.create(photo.id, EventKind.PHOTO_UPLOADED)

        await store.reset()

        assert await store.read() == Document()
        assert not stored_file.exists()
