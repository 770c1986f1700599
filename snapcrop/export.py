"""
Write the full screenshot and the cropped drawing.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import cv2 as cv
import numpy as np
from loguru import logger

from snapcrop.config import ExportSettings
from snapcrop.detector import BoundingBox, Detection
from snapcrop.errors import ExportError
from snapcrop.reconstruct import Bitmap


class ImageWriter(Protocol):
    def write_image(self, bitmap: Bitmap, path: Path) -> None: ...


class OpenCVWriter:
    """Writes with ``cv.imwrite``; the format follows the file extension."""

    def write_image(self, bitmap: Bitmap, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            written = cv.imwrite(str(path), bitmap.pixels)
        except cv.error as e:
            raise OSError(f"cannot encode {path}: {e}") from e
        if not written:
            raise OSError(f"cannot write {path}")


@dataclass
class ExportResult:
    full_path: Path
    cropped_path: Path
    full_written: bool = False
    cropped_written: bool = False
    full_error: Optional[str] = None
    cropped_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.full_written and self.cropped_written


def crop(bitmap: Bitmap, box: BoundingBox) -> Bitmap:
    return Bitmap(bitmap.pixels[box.y_min : box.y_max + 1, box.x_min : box.x_max + 1].copy())


def stylize(bitmap: Bitmap, settings: ExportSettings) -> Bitmap:
    """
    Optionally invert the colors and turn the background transparent.
    """
    img = bitmap.pixels
    if settings.invert:
        img = cv.bitwise_not(img)
    if not settings.transparent:
        return Bitmap(img)

    background = 0 if settings.invert else 255
    gray = img if img.ndim == 2 else cv.cvtColor(img, cv.COLOR_BGR2GRAY)
    bg_mask = np.where(gray == background, 0, 255).astype(np.uint8)
    alpha = cv.cvtColor(img, cv.COLOR_GRAY2BGRA if img.ndim == 2 else cv.COLOR_BGR2BGRA)
    alpha[:, :, 3] = bg_mask
    return Bitmap(alpha)


def draw_regions(bitmap: Bitmap, detection: Detection) -> Bitmap:
    """Every significant ink component in red, the final box in green."""
    img = bitmap.pixels
    img = cv.cvtColor(img, cv.COLOR_GRAY2BGR) if img.ndim == 2 else img.copy()
    for r in detection.significant:
        cv.rectangle(img, (r.x, r.y), (r.x_max, r.y_max), (0, 0, 255), thickness=2)
    box = detection.box
    cv.rectangle(img, (box.x_min, box.y_min), (box.x_max, box.y_max), (0, 255, 0), thickness=3)
    return Bitmap(img)


def export(
    bitmap: Bitmap,
    box: BoundingBox,
    full_path: Path,
    cropped_path: Path,
    settings: Optional[ExportSettings] = None,
    writer: Optional[ImageWriter] = None,
) -> ExportResult:
    """
    Write ``bitmap`` unchanged to ``full_path`` and its ``box`` slice to
    ``cropped_path``.

    Both writes are always attempted. If either fails an ``ExportError``
    carrying the ``ExportResult`` is raised; nothing already written is
    removed.
    """
    settings = settings or ExportSettings()
    writer = writer or OpenCVWriter()
    result = ExportResult(full_path=Path(full_path), cropped_path=Path(cropped_path))

    try:
        writer.write_image(bitmap, result.full_path)
        result.full_written = True
        logger.info("Saved screenshot to {}", result.full_path)
    except OSError as e:
        result.full_error = str(e)
        logger.error("Failed to save screenshot: {}", e)

    try:
        writer.write_image(stylize(crop(bitmap, box), settings), result.cropped_path)
        result.cropped_written = True
        logger.info("Saved cropped content to {}", result.cropped_path)
    except OSError as e:
        result.cropped_error = str(e)
        logger.error("Failed to save cropped content: {}", e)

    if not result.ok:
        failed = []
        if not result.full_written:
            failed.append(str(result.full_path))
        if not result.cropped_written:
            failed.append(str(result.cropped_path))
        raise ExportError("could not write " + ", ".join(failed), result)
    return result
