"""
Static configuration for one capture run.

Everything is validated once, before the pipeline starts, and passed
explicitly into each stage.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from snapcrop.errors import ConfigError

PixelFormat = Literal["gray8", "gray16", "rgb565", "bgra"]

BYTES_PER_PIXEL: Dict[str, int] = {
    "gray8": 1,
    "gray16": 2,
    "rgb565": 2,
    "bgra": 4,
}


class RemoteTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "10.11.99.1"
    user: str = "root"
    port: int = Field(default=22, ge=1, le=65535)
    key_filename: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: float = Field(default=10.0, gt=0)


class FramebufferGeometry(BaseModel):
    """Layout of the framebuffer as it sits in device memory.

    ``width`` and ``height`` describe the raw scan-out grid, ``rotation``
    is the clockwise turn that brings it upright.
    """

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    pixel_format: PixelFormat = "gray8"
    byte_order: Literal["little", "big"] = "little"
    rotation: Literal[0, 90, 180, 270] = 0
    hflip: bool = False
    # bytes between the start of the mapping and the first pixel
    header_offset: int = Field(default=0, ge=0)
    max_frames: int = Field(default=2, ge=1)
    size_tolerance: int = Field(default=8192, ge=0)

    @property
    def bytes_per_pixel(self) -> int:
        return BYTES_PER_PIXEL[self.pixel_format]

    @property
    def frame_bytes(self) -> int:
        return self.width * self.height * self.bytes_per_pixel

    @property
    def upright_size(self) -> Tuple[int, int]:
        if self.rotation in (90, 270):
            return self.height, self.width
        return self.width, self.height


class LevelsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    black_point: float = Field(default=0.0, ge=0.0, le=1.0)
    white_point: float = Field(default=1.0, ge=0.0, le=1.0)
    gamma: float = Field(default=1.0, gt=0.0)

    @model_validator(mode="after")
    def _check_order(self) -> "LevelsSettings":
        if self.black_point >= self.white_point:
            raise ValueError("black_point must be below white_point")
        return self


class ExcludedRegion(BaseModel):
    """Rectangle of UI chrome, in upright bitmap coordinates."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @classmethod
    def parse(cls, text: str) -> "ExcludedRegion":
        """Build a region from an ``x,y,width,height`` string."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ValueError(f"expected x,y,width,height, got {text!r}")
        x, y, w, h = (int(p) for p in parts)
        return cls(x=x, y=y, width=w, height=h)


# the menu button in the top-left corner of the drawing screen
DEFAULT_EXCLUDED: List[ExcludedRegion] = [ExcludedRegion(x=0, y=0, width=200, height=200)]


class DetectionSettings(BaseModel):
    threshold: int = Field(default=200, ge=1, le=255)
    min_area: int = Field(default=100, ge=1)
    margin: int = Field(default=50, ge=0)
    connectivity: Literal[4, 8] = 8
    excluded: List[ExcludedRegion] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED))


class ExportSettings(BaseModel):
    invert: bool = False
    transparent: bool = False


rm1_geometry = FramebufferGeometry(width=1408, height=1872, pixel_format="rgb565")

rm2_geometry = FramebufferGeometry(
    width=1872,
    height=1404,
    pixel_format="gray8",
    rotation=270,
    header_offset=7,
)

rm2_gray16_geometry = FramebufferGeometry(
    width=1872,
    height=1404,
    pixel_format="gray16",
    rotation=270,
    hflip=True,
    header_offset=7,
)

DEVICE_PRESETS: Dict[str, Tuple[FramebufferGeometry, LevelsSettings]] = {
    "rm1": (rm1_geometry, LevelsSettings()),
    "rm2": (rm2_geometry, LevelsSettings()),
    "rm2-gray16": (rm2_gray16_geometry, LevelsSettings(black_point=0.045, white_point=0.06)),
}


class CaptureConfig(BaseModel):
    target: RemoteTarget = Field(default_factory=RemoteTarget)
    process_name: str = Field(default="xochitl", min_length=1)
    geometry: FramebufferGeometry = rm2_geometry
    levels: LevelsSettings = Field(default_factory=LevelsSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    read_timeout: float = Field(default=30.0, gt=0)
    # remote lz4 binary used to compress the transfer, None to send raw bytes
    lz4_path: Optional[str] = "/opt/bin/lz4"

    def with_preset(self, name: str) -> "CaptureConfig":
        try:
            geometry, levels = DEVICE_PRESETS[name]
        except KeyError:
            raise ConfigError(f"unknown device preset {name!r}") from None
        return self.model_copy(update={"geometry": geometry, "levels": levels})


def load_config(path: Path) -> CaptureConfig:
    """Read a JSON config file; missing keys fall back to the defaults."""
    try:
        return CaptureConfig.model_validate_json(Path(path).read_text())
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}: {e}") from e
