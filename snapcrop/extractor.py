"""Copy the framebuffer bytes out of the display process."""
from __future__ import annotations

from typing import Optional

from loguru import logger

from snapcrop.errors import AccessDenied, ExtractTimeout, PartialRead
from snapcrop.inspector import FramebufferRegion
from snapcrop.remote import RemoteCapability


def extract(remote: RemoteCapability, region: FramebufferRegion, timeout: Optional[float] = None) -> bytes:
    """
    Read exactly ``region.byte_length`` bytes at ``region.base_address``.

    A short read is an error, never a truncated frame. Nothing is retried here.
    """
    logger.info("Extracting {} bytes at 0x{:x} from PID {}", region.byte_length, region.base_address, region.pid)
    try:
        data = remote.read_process_memory(region.pid, region.base_address, region.byte_length, timeout=timeout)
    except TimeoutError as e:
        raise ExtractTimeout(f"reading framebuffer timed out after {timeout}s") from e
    except PermissionError as e:
        raise AccessDenied(f"reading memory of PID {region.pid} was refused: {e}") from e

    if len(data) < region.byte_length:
        raise PartialRead(region.byte_length, len(data))
    if len(data) > region.byte_length:
        logger.debug("Dropping {} trailing bytes", len(data) - region.byte_length)
    return bytes(data[: region.byte_length])
