"""
One capture, start to finish: locate, extract, reconstruct, detect, export.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger

from snapcrop.config import CaptureConfig
from snapcrop.detector import BoundingBox, analyze
from snapcrop.export import ExportResult, ImageWriter, OpenCVWriter, draw_regions, export
from snapcrop.extractor import extract
from snapcrop.inspector import FramebufferRegion, locate_framebuffer
from snapcrop.reconstruct import Decoder, decode_raw, reconstruct
from snapcrop.remote import RemoteCapability


@dataclass
class CaptureResult:
    region: FramebufferRegion
    width: int
    height: int
    box: BoundingBox
    export: ExportResult
    overlay_path: Optional[Path] = None


def output_paths(directory: Path, stem: Optional[str] = None) -> Tuple[Path, Path]:
    """``<stem>.png`` and ``<stem>_cropped.png``, stem defaults to a timestamp."""
    if not stem:
        stem = datetime.now().strftime("%m-%d-%Y-%H-%M-%S") + "-remarkable-screen"
    directory = Path(directory)
    return directory / f"{stem}.png", directory / f"{stem}_cropped.png"


def capture_raw(remote: RemoteCapability, config: CaptureConfig) -> Tuple[FramebufferRegion, bytes]:
    """The remote half of the pipeline; the connection is not needed afterwards."""
    region = locate_framebuffer(remote, config.process_name, config.geometry)
    raw = extract(remote, region, timeout=config.read_timeout)
    return region, raw


def process(
    raw: bytes,
    region: FramebufferRegion,
    config: CaptureConfig,
    full_path: Path,
    cropped_path: Path,
    writer: Optional[ImageWriter] = None,
    decoder: Decoder = decode_raw,
    overlay_path: Optional[Path] = None,
) -> CaptureResult:
    """The local half of the pipeline."""
    writer = writer or OpenCVWriter()
    bitmap = reconstruct(raw, config.geometry, config.levels, decoder)
    detection = analyze(bitmap, config.detection.excluded, config.detection)

    if overlay_path is not None:
        try:
            writer.write_image(draw_regions(bitmap, detection), Path(overlay_path))
            logger.info("Saved region overlay to {}", overlay_path)
        except OSError as e:
            logger.warning("Failed to save region overlay: {}", e)
            overlay_path = None

    result = export(bitmap, detection.box, full_path, cropped_path, config.export, writer)
    return CaptureResult(
        region=region,
        width=bitmap.width,
        height=bitmap.height,
        box=detection.box,
        export=result,
        overlay_path=overlay_path,
    )


def run_capture(
    remote: RemoteCapability,
    config: CaptureConfig,
    full_path: Path,
    cropped_path: Path,
    writer: Optional[ImageWriter] = None,
    overlay_path: Optional[Path] = None,
) -> CaptureResult:
    region, raw = capture_raw(remote, config)
    return process(raw, region, config, full_path, cropped_path, writer, overlay_path=overlay_path)
