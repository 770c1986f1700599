"""
Find the handwriting on the screen.

Dark pixels outside the UI chrome are grouped into connected components,
specks below ``min_area`` are dropped and the rest are boxed together.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import cv2 as cv
import numpy as np
from loguru import logger

from snapcrop.config import DetectionSettings, ExcludedRegion
from snapcrop.reconstruct import Bitmap


@dataclass(frozen=True)
class BoundingBox:
    """Inclusive pixel rectangle.

    ``has_content`` is False for the full-bitmap fallback returned when no
    ink was found.
    """

    x_min: int
    y_min: int
    x_max: int
    y_max: int
    has_content: bool = True

    @classmethod
    def full(cls, width: int, height: int) -> "BoundingBox":
        return cls(0, 0, width - 1, height - 1, has_content=False)

    @property
    def width(self) -> int:
        return self.x_max - self.x_min + 1

    @property
    def height(self) -> int:
        return self.y_max - self.y_min + 1

    def contains(self, x_min: int, y_min: int, x_max: int, y_max: int) -> bool:
        return self.x_min <= x_min and self.y_min <= y_min and x_max <= self.x_max and y_max <= self.y_max


@dataclass(frozen=True)
class InkRegion:
    x: int
    y: int
    width: int
    height: int
    area: int
    darkness: float

    @property
    def x_max(self) -> int:
        return self.x + self.width - 1

    @property
    def y_max(self) -> int:
        return self.y + self.height - 1


@dataclass
class Detection:
    box: BoundingBox
    regions: List[InkRegion] = field(default_factory=list)
    significant: List[InkRegion] = field(default_factory=list)


def ink_mask(gray: np.ndarray, threshold: int) -> np.ndarray:
    """255 where a pixel is darker than ``threshold``, 0 elsewhere."""
    _, mask = cv.threshold(gray, threshold - 1, 255, cv.THRESH_BINARY_INV)
    return mask


def mask_excluded(mask: np.ndarray, excluded: Sequence[ExcludedRegion]) -> np.ndarray:
    for r in excluded:
        mask[r.y : r.y + r.height, r.x : r.x + r.width] = 0
    return mask


def find_ink_regions(gray: np.ndarray, mask: np.ndarray, connectivity: int = 8) -> List[InkRegion]:
    count, labels, stats, _ = cv.connectedComponentsWithStats(mask, connectivity=connectivity)
    darkness = np.bincount(
        labels.ravel(),
        weights=(255.0 - gray.astype(np.float64)).ravel(),
        minlength=count,
    )

    regions = []
    # label 0 is the background
    for i in range(1, count):
        area = int(stats[i, cv.CC_STAT_AREA])
        regions.append(
            InkRegion(
                x=int(stats[i, cv.CC_STAT_LEFT]),
                y=int(stats[i, cv.CC_STAT_TOP]),
                width=int(stats[i, cv.CC_STAT_WIDTH]),
                height=int(stats[i, cv.CC_STAT_HEIGHT]),
                area=area,
                darkness=float(darkness[i] / area),
            )
        )
    return regions


def enclose(regions: Sequence[InkRegion], width: int, height: int, margin: int) -> BoundingBox:
    """Union of ``regions`` grown by ``margin`` and clipped to the bitmap."""
    x_min = min(r.x for r in regions)
    y_min = min(r.y for r in regions)
    x_max = max(r.x_max for r in regions)
    y_max = max(r.y_max for r in regions)
    return BoundingBox(
        x_min=max(x_min - margin, 0),
        y_min=max(y_min - margin, 0),
        x_max=min(x_max + margin, width - 1),
        y_max=min(y_max + margin, height - 1),
    )


def analyze(
    bitmap: Bitmap,
    excluded: Optional[Sequence[ExcludedRegion]] = None,
    settings: Optional[DetectionSettings] = None,
) -> Detection:
    settings = settings or DetectionSettings()
    if excluded is None:
        excluded = settings.excluded
    gray = bitmap.gray()
    mask = mask_excluded(ink_mask(gray, settings.threshold), excluded)
    regions = find_ink_regions(gray, mask, settings.connectivity)
    significant = [r for r in regions if r.area >= settings.min_area]
    logger.debug("Found {} ink components, {} significant", len(regions), len(significant))

    if not significant:
        logger.info("No significant ink found, keeping the full bitmap")
        return Detection(BoundingBox.full(bitmap.width, bitmap.height), regions, significant)

    box = enclose(significant, bitmap.width, bitmap.height, settings.margin)
    logger.info(
        "Content bounding box: ({}, {}) to ({}, {}), size: {}x{}",
        box.x_min,
        box.y_min,
        box.x_max,
        box.y_max,
        box.width,
        box.height,
    )
    return Detection(box, regions, significant)


def detect(
    bitmap: Bitmap,
    excluded: Optional[Sequence[ExcludedRegion]] = None,
    settings: Optional[DetectionSettings] = None,
) -> BoundingBox:
    """Bounding box of all significant ink, or the full bitmap if there is none."""
    return analyze(bitmap, excluded, settings).box
