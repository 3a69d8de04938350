"""
Pytest configuration and fixtures for RapidPhotoFlow tests.
"""

import os
import random
import shutil
import tempfile
from io import BytesIO
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables before importing the app
_TEST_ROOT = tempfile.mkdtemp(prefix="photoflow_test_")
os.environ["PHOTOFLOW_DB_FILE"] = os.path.join(_TEST_ROOT, "database.json")
os.environ["PHOTOFLOW_UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["PHOTOFLOW_SUCCESS_PROBABILITY"] = "1.0"
os.environ["PHOTOFLOW_TIME_SCALE"] = "0"

from rapid_photo_flow.image_metadata import ImageInfo
from rapid_photo_flow.main import app, photo_manager
from rapid_photo_flow.models import FileDescriptor
from rapid_photo_flow.processor import PhotoProcessor
from rapid_photo_flow.repositories import EventRepository, PhotoRepository
from rapid_photo_flow.storage import DocumentStore


@pytest.fixture(scope="session", autouse=True)
def test_root():
    """Remove the app's temporary directories after the session."""
    yield Path(_TEST_ROOT)
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def client():
    """Create a test client with the app lifespan running, and wipe data afterwards."""
    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(photo_manager.processor.wait_idle)
        test_client.post("/api/reset")


@pytest.fixture
def store(tmp_path):
    """An isolated document store with its own lock."""
    return DocumentStore(db_file=tmp_path / "database.json", upload_dir=tmp_path / "uploads")


@pytest.fixture
def photos(store):
    return PhotoRepository(store)


@pytest.fixture
def events(store):
    return EventRepository(store)


def fixed_probe(path):
    return ImageInfo(width=640, height=480, format="jpeg")


@pytest.fixture
def make_processor(photos, events, store):
    """Build a processor with no stage delays and a chosen outcome."""

    def _make(success_probability=1.0, **kwargs):
        kwargs.setdefault("probe", fixed_probe)
        return PhotoProcessor(
            photos=photos,
            events=events,
            store=store,
            success_probability=success_probability,
            time_scale=0,
            rng=random.Random(7),
            **kwargs,
        )

    return _make


@pytest.fixture
def descriptor():
    """Upload descriptor for a 1234-byte JPEG named a.jpg."""
    return FileDescriptor(filename="stored-a.jpg", original_name="a.jpg", size=1234, mimetype="image/jpeg")


@pytest.fixture
def stored_file(store, descriptor):
    """Write 1234 bytes of non-image content where the descriptor says the upload lives."""
    store.upload_dir.mkdir(parents=True, exist_ok=True)
    path = store.upload_path(descriptor.filename)
    path.write_bytes(b"x" * descriptor.size)
    return path


@pytest.fixture
def sample_png():
    """A small valid PNG image."""
    buffer = BytesIO()
    Image.new("RGB", (8, 6), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()
