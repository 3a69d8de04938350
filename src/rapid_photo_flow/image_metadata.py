"""Image metadata extraction for processed photos."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from PIL import Image

from .models import PhotoMetadata
from .utils import format_megabytes, split_extension

logger = logging.getLogger(__name__)

UNKNOWN_DIMENSIONS = "Unknown"


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str


ImageProbe = Callable[[Path], ImageInfo]


def probe_image(path: Path) -> ImageInfo:
    """Read dimensions and format from the image header with Pillow."""
    with Image.open(path) as img:
        width, height = img.size
        return ImageInfo(width=width, height=height, format=img.format or "")


def _describe(path: Path, probe: ImageProbe) -> PhotoMetadata:
    size = path.stat().st_size
    try:
        info = probe(path)
    except Exception as exc:
        logger.warning("Image probe failed for %s, using file fallback: %s", path.name, exc)
        _, extension = split_extension(path.name)
        return PhotoMetadata(
            dimensions=UNKNOWN_DIMENSIONS,
            size=format_megabytes(size),
            format=extension.lstrip(".").upper(),
        )

    return PhotoMetadata(
        dimensions=f"{info.width}x{info.height}",
        size=format_megabytes(size),
        format=info.format.upper(),
    )


async def get_image_metadata(path: Path, probe: ImageProbe = probe_image) -> PhotoMetadata:
    """
    Describe a stored image.

    When ``probe`` fails, dimensions are reported as ``"Unknown"`` and the
    format is taken from the file extension. A missing file is not covered by
    the fallback: the ``OSError`` from ``stat`` propagates.
    """
    return await asyncio.to_thread(_describe, Path(path), probe)
