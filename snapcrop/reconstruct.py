"""
Turn the raw framebuffer bytes into an upright 8-bit bitmap.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import cv2 as cv
import numpy as np
from loguru import logger

from snapcrop.config import FramebufferGeometry, LevelsSettings
from snapcrop.errors import DecodeError

ROTATIONS = {
    90: cv.ROTATE_90_CLOCKWISE,
    180: cv.ROTATE_180,
    270: cv.ROTATE_90_COUNTERCLOCKWISE,
}


@dataclass
class Bitmap:
    """Upright pixels, ``(height, width)`` for gray or ``(height, width, 3)`` BGR."""

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else self.pixels.shape[2]

    def gray(self) -> np.ndarray:
        if self.channels == 1:
            return self.pixels
        return cv.cvtColor(self.pixels, cv.COLOR_BGR2GRAY)


def _unpack_rgb565(values: np.ndarray) -> np.ndarray:
    r = ((values >> 11) & 0x1F).astype(np.uint16) * 255 // 31
    g = ((values >> 5) & 0x3F).astype(np.uint16) * 255 // 63
    b = (values & 0x1F).astype(np.uint16) * 255 // 31
    return np.dstack([b, g, r]).astype(np.uint8)


def decode_raw(data: bytes, geometry: FramebufferGeometry) -> np.ndarray:
    """
    Decode raw scan-out bytes into an array in the device's own orientation.

    gray16 stays 16 bit so the levels curve sees the full precision.
    """
    h, w = geometry.height, geometry.width
    endian = "<" if geometry.byte_order == "little" else ">"

    if geometry.pixel_format == "gray8":
        return np.frombuffer(data, dtype=np.uint8).reshape((h, w))
    if geometry.pixel_format == "gray16":
        return np.frombuffer(data, dtype=endian + "u2").reshape((h, w))
    if geometry.pixel_format == "rgb565":
        return _unpack_rgb565(np.frombuffer(data, dtype=endian + "u2").reshape((h, w)))
    if geometry.pixel_format == "bgra":
        return cv.cvtColor(np.frombuffer(data, dtype=np.uint8).reshape((h, w, 4)), cv.COLOR_BGRA2BGR)
    raise DecodeError(f"unsupported pixel format {geometry.pixel_format!r}")


def levels_curve(x: np.ndarray, levels: LevelsSettings) -> np.ndarray:
    """Map normalized intensities in [0, 1] through the levels curve to uint8."""
    t = np.clip((x - levels.black_point) / (levels.white_point - levels.black_point), 0.0, 1.0)
    if levels.gamma != 1.0:
        t = t ** (1.0 / levels.gamma)
    return np.round(t * 255.0).astype(np.uint8)


def apply_levels(pixels: np.ndarray, levels: LevelsSettings) -> np.ndarray:
    if pixels.dtype == np.uint8:
        lut = levels_curve(np.arange(256, dtype=np.float64) / 255.0, levels)
        return lut[pixels]
    return levels_curve(pixels.astype(np.float64) / 65535.0, levels)


def orient(pixels: np.ndarray, rotation: int, hflip: bool = False) -> np.ndarray:
    if rotation:
        pixels = cv.rotate(pixels, ROTATIONS[rotation])
    if hflip:
        pixels = cv.flip(pixels, 1)
    return pixels


Decoder = Callable[[bytes, FramebufferGeometry], np.ndarray]


def reconstruct(
    raw: bytes,
    geometry: FramebufferGeometry,
    levels: LevelsSettings = LevelsSettings(),
    decoder: Decoder = decode_raw,
) -> Bitmap:
    if len(raw) != geometry.frame_bytes:
        raise DecodeError(
            f"got {len(raw)} bytes, a {geometry.width}x{geometry.height} "
            f"{geometry.pixel_format} frame needs {geometry.frame_bytes}"
        )
    try:
        pixels = decoder(raw, geometry)
    except (ValueError, cv.error) as e:
        raise DecodeError(f"cannot decode framebuffer: {e}") from e

    pixels = apply_levels(pixels, levels)
    pixels = orient(pixels, geometry.rotation, geometry.hflip)
    bitmap = Bitmap(np.ascontiguousarray(pixels))
    logger.info("Reconstructed {}x{} bitmap", bitmap.width, bitmap.height)
    return bitmap
