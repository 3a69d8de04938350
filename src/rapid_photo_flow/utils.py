"""
Utility functions for file system operations and upload naming.

This module provides helper functions for:
- Ensuring directory creation with proper error handling
- Validating image file extensions
- Generating unique stored filenames for uploads
- Formatting byte sizes for display
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable
from uuid import uuid4

IMAGE_EXTENSIONS = (".jpeg", ".jpg", ".png", ".gif", ".webp")


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("holiday.JPG")
        ("holiday", ".JPG")
    """
    path = Path(filename)
    return path.stem, path.suffix


def is_allowed_image(filename: str, content_type: str | None, allowed: Iterable[str] = IMAGE_EXTENSIONS) -> bool:
    """
    Check both the extension and the declared media type of an upload.

    Both must name an image type; a ``.jpg`` declared as ``text/plain`` is rejected.
    """
    _, extension = split_extension(filename)
    if extension.lower() not in {ext.lower() for ext in allowed}:
        return False
    subtype = (content_type or "").lower().rpartition("/")[2]
    return any(subtype == ext.lstrip(".").lower() for ext in allowed)


def unique_filename(original_name: str) -> str:
    """Return a collision-free stored name that keeps the original extension."""
    _, extension = split_extension(original_name)
    return f"{uuid4()}{extension}"


def format_megabytes(size: int) -> str:
    """
    Render a byte count the way photo metadata reports it.

    Example:
        >>> format_megabytes(1572864)
        "1.50 MB"
    """
    return f"{size / (1024 * 1024):.2f} MB"
