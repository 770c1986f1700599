"""Shared fixtures.

Geometries here are small so whole frames can be built with numpy in
memory; the rm2-sized ones are used only where the sizes matter.
"""
from __future__ import annotations

import pytest
from loguru import logger

from snapcrop.config import FramebufferGeometry


@pytest.fixture(autouse=True)
def _quiet_logs():
    logger.remove()
    yield


@pytest.fixture()
def rm2_sized():
    """rm2 scan-out size without the pixel header."""
    return FramebufferGeometry(width=1872, height=1404, pixel_format="gray8")


@pytest.fixture()
def small_geometry():
    return FramebufferGeometry(width=6, height=4, pixel_format="gray8")
