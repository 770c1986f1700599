"""
Find the framebuffer inside the display process.

The framebuffer is not labelled in ``/proc/<pid>/maps``, so mappings are
ranked by how well their size fits the expected frame geometry. Ranking,
highest first:

1. size, with or without the pixel header, is an exact multiple of one frame
2. holds at most ``max_frames`` frames, then more frames first (prefers
   double buffers)
3. the mapping directly follows the ``/dev/fb0`` device mapping
4. lower start address
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from snapcrop.config import FramebufferGeometry
from snapcrop.errors import FramebufferNotFound, ProcessNotFound
from snapcrop.remote import MemoryMapRecord, RemoteCapability

DEVICE_LABEL = "/dev/fb0"


@dataclass(frozen=True)
class ProcessHandle:
    pid: int
    memory_map: Tuple[MemoryMapRecord, ...]


@dataclass(frozen=True)
class FramebufferRegion:
    pid: int
    base_address: int
    byte_length: int
    width: int
    height: int
    bytes_per_pixel: int
    rotation: int


@dataclass(frozen=True)
class Candidate:
    record: MemoryMapRecord
    frames: int
    exact: bool
    follows_device: bool
    # bytes skipped before the first pixel, 0 or the geometry's header_offset
    offset: int = 0
    oversized: bool = False

    @property
    def rank(self) -> Tuple[bool, bool, int, bool, int]:
        return (self.exact, not self.oversized, self.frames, self.follows_device, -self.record.start)


def _label_matches(label: str) -> bool:
    # framebuffers are anonymous allocations or the device node itself
    return label == "" or label.startswith("/dev/fb")


def _fit(record: MemoryMapRecord, offset: int, geometry: FramebufferGeometry) -> Optional[Tuple[int, int]]:
    """``(frames, slack)`` when the pixels starting at ``offset`` fit the mapping."""
    frame = geometry.frame_bytes
    usable = record.size - offset
    frames = usable // frame
    if frames < 1:
        return None
    slack = usable - frames * frame
    # mappings holding more frames than expected only count as exact multiples
    if slack > geometry.size_tolerance or (frames > geometry.max_frames and slack):
        return None
    return frames, slack


def rank_candidates(records: Sequence[MemoryMapRecord], geometry: FramebufferGeometry) -> List[Candidate]:
    """Return every plausible framebuffer mapping, best first.

    A mapping that is an exact multiple of the frame size starts its pixels
    at its own base address; otherwise the pixels are expected
    ``header_offset`` bytes in.
    """
    offsets = [0] if geometry.header_offset == 0 else [geometry.header_offset, 0]
    candidates = []
    previous = None
    for record in records:
        follows_device = previous is not None and previous.label == DEVICE_LABEL
        previous = record
        if not record.readable or not _label_matches(record.label):
            continue
        fits = [(offset, _fit(record, offset, geometry)) for offset in offsets]
        fits = [(offset, fit) for offset, fit in fits if fit is not None]
        if not fits:
            continue
        # an exact fit wins, otherwise the first offset that fits
        offset, (frames, slack) = next(((o, f) for o, f in fits if f[1] == 0), fits[0])
        candidates.append(
            Candidate(
                record,
                frames,
                slack == 0,
                follows_device,
                offset=offset,
                oversized=frames > geometry.max_frames,
            )
        )
    candidates.sort(key=lambda c: c.rank, reverse=True)
    return candidates


def select_framebuffer(handle: ProcessHandle, geometry: FramebufferGeometry) -> FramebufferRegion:
    candidates = rank_candidates(handle.memory_map, geometry)
    if not candidates:
        raise FramebufferNotFound(
            f"no mapping of process {handle.pid} fits a {geometry.width}x{geometry.height} "
            f"{geometry.pixel_format} frame ({geometry.frame_bytes} bytes)"
        )
    for c in candidates:
        logger.debug(
            "Candidate {:x}-{:x} +{} frames={} exact={} after_fb0={}",
            c.record.start,
            c.record.end,
            c.offset,
            c.frames,
            c.exact,
            c.follows_device,
        )
    best = candidates[0]
    return FramebufferRegion(
        pid=handle.pid,
        base_address=best.record.start + best.offset,
        byte_length=geometry.frame_bytes,
        width=geometry.width,
        height=geometry.height,
        bytes_per_pixel=geometry.bytes_per_pixel,
        rotation=geometry.rotation,
    )


def find_pids(remote: RemoteCapability, process_name: str) -> List[int]:
    pids = sorted(p.pid for p in remote.list_processes() if p.name == process_name)
    if not pids:
        raise ProcessNotFound(f"no process named {process_name!r} is running")
    return pids


def locate_framebuffer(
    remote: RemoteCapability, process_name: str, geometry: FramebufferGeometry
) -> FramebufferRegion:
    """
    Locate the live framebuffer of ``process_name``.

    When several processes share the name they are tried lowest PID first
    and the first one holding a framebuffer-sized mapping wins. A process
    that exited after the listing is skipped.
    """
    pids = find_pids(remote, process_name)
    logger.info("Found {} PID(s): {}", process_name, " ".join(map(str, pids)))

    not_found = None
    gone = None
    for pid in pids:
        try:
            handle = ProcessHandle(pid=pid, memory_map=tuple(remote.read_memory_map(pid)))
            region = select_framebuffer(handle, geometry)
        except FramebufferNotFound as e:
            logger.debug("PID {}: {}", pid, e)
            not_found = not_found or e
            continue
        except ProcessNotFound as e:
            logger.debug("PID {}: {}", pid, e)
            gone = gone or e
            continue
        logger.info("Framebuffer of PID {} at 0x{:x} ({} bytes)", pid, region.base_address, region.byte_length)
        return region
    raise not_found or gone
