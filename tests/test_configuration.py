"""
Tests for settings loading, logging setup and upload helpers.
"""

import logging

import pytest
from omegaconf.errors import ConfigKeyError

from rapid_photo_flow.app_logging import configure_logging
from rapid_photo_flow.configuration import load_settings
from rapid_photo_flow.utils import is_allowed_image, split_extension, unique_filename


class TestLoadSettings:
    def test_defaults_are_resolved(self, monkeypatch):
        monkeypatch.delenv("PHOTOFLOW_SUCCESS_PROBABILITY", raising=False)
        monkeypatch.delenv("PHOTOFLOW_TIME_SCALE", raising=False)

        settings = load_settings()

        assert settings.processing.success_probability == 0.95
        assert settings.processing.time_scale == 1.0
        assert settings.uploads.url_prefix == "/uploads"
        assert settings.uploads.max_files == 10
        assert settings.processing.failure_reason == "Processing failed due to quality issues"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PHOTOFLOW_DB_FILE", str(tmp_path / "db.json"))
        monkeypatch.setenv("PHOTOFLOW_SUCCESS_PROBABILITY", "0.5")

        settings = load_settings()

        assert settings.storage.db_file == str(tmp_path / "db.json")
        assert settings.processing.success_probability == 0.5

    def test_explicit_overrides_win(self):
        settings = load_settings({"processing": {"time_scale": 0}, "uploads": {"max_files": 3}})

        assert settings.processing.time_scale == 0
        assert settings.uploads.max_files == 3

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigKeyError):
            load_settings({"processing": {"retries": 3}})


class TestConfigureLogging:
    def test_configure_logging_idempotent(self):
        logger = logging.getLogger("rapid_photo_flow")
        saved = list(logger.handlers)
        logger.handlers.clear()
        try:
            configure_logging("debug")
            configure_logging("debug")

            assert len(logger.handlers) == 1
            assert logger.level == logging.DEBUG
        finally:
            logger.handlers[:] = saved


class TestUploadHelpers:
    @pytest.mark.parametrize(
        "filename, content_type, allowed",
        [
            ("a.jpg", "image/jpeg", True),
            ("a.JPEG", "image/jpeg", True),
            ("b.png", "image/png", True),
            ("c.webp", "image/webp", True),
            ("d.txt", "text/plain", False),
            ("e.jpg", "text/plain", False),
            ("f.pdf", "image/png", False),
            ("g", None, False),
        ],
    )
    def test_is_allowed_image(self, filename, content_type, allowed):
        assert is_allowed_image(filename, content_type) is allowed

    def test_unique_filename_keeps_extension(self):
        first = unique_filename("holiday.png")
        second = unique_filename("holiday.png")

        assert first != second
        assert split_extension(first)[1] == ".png"
