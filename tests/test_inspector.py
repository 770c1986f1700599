"""Framebuffer location: process selection and memory-map ranking."""
from __future__ import annotations

import pytest

from snapcrop.config import CaptureConfig, FramebufferGeometry
from snapcrop.errors import FramebufferNotFound, ProcessNotFound
from snapcrop.inspector import ProcessHandle, locate_framebuffer, rank_candidates, select_framebuffer
from tests.fakes import PAGE, FakeRemote, rec

FRAME = 1872 * 1404


def noise_records():
    """Mappings that must never be picked."""
    return [
        rec(0x00010000, 0x1000, perms="r-xp", label="/usr/bin/xochitl"),
        rec(0x00400000, 40 * PAGE, label="[heap]"),
        rec(0x10000000, 1024 * 1024),
        rec(0x20000000, 10 * 1024 * 1024),
        rec(0x7EFF0000, 33 * PAGE, label="[stack]"),
    ]


class TestSelectFramebuffer:
    def test_single_frame_sized_record(self, rm2_sized):
        records = noise_records() + [rec(0x30000000, FRAME)]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)
        assert region.base_address == 0x30000000
        assert region.byte_length == FRAME
        assert (region.width, region.height, region.bytes_per_pixel) == (1872, 1404, 1)

    def test_no_matching_record(self, rm2_sized):
        with pytest.raises(FramebufferNotFound):
            select_framebuffer(ProcessHandle(1, tuple(noise_records())), rm2_sized)

    def test_empty_map(self, rm2_sized):
        with pytest.raises(FramebufferNotFound):
            select_framebuffer(ProcessHandle(1, ()), rm2_sized)

    def test_double_buffer_preferred(self, rm2_sized):
        records = [rec(0x30000000, FRAME), rec(0x40000000, 2 * FRAME)]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)
        # first frame of the double buffer
        assert region.base_address == 0x40000000
        assert region.byte_length == FRAME

    def test_exact_size_beats_tolerance_match(self, rm2_sized):
        records = [rec(0x30000000, 2 * FRAME + PAGE), rec(0x40000000, FRAME)]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)
        assert region.base_address == 0x40000000

    def test_unreadable_record_skipped(self, rm2_sized):
        records = [rec(0x30000000, FRAME, perms="---p")]
        with pytest.raises(FramebufferNotFound):
            select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)

    def test_file_backed_record_skipped(self, rm2_sized):
        records = [rec(0x30000000, FRAME, perms="r--p", label="/usr/share/fonts/big.ttf")]
        with pytest.raises(FramebufferNotFound):
            select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)

    def test_device_mapping_itself_accepted(self, rm2_sized):
        records = [rec(0x30000000, FRAME, perms="rw-s", label="/dev/fb0")]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)
        assert region.base_address == 0x30000000

    def test_oversized_exact_multiple_accepted(self, rm2_sized):
        records = [rec(0x30000000, 3 * FRAME)]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)
        assert region.base_address == 0x30000000

    def test_oversized_ranked_below_double_buffer(self, rm2_sized):
        records = [rec(0x30000000, 4 * FRAME), rec(0x40000000, 2 * FRAME)]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)
        assert region.base_address == 0x40000000

    def test_oversized_needs_exact_size(self, rm2_sized):
        records = [rec(0x30000000, 3 * FRAME + PAGE)]
        with pytest.raises(FramebufferNotFound):
            select_framebuffer(ProcessHandle(1, tuple(records)), rm2_sized)

    def test_slack_beyond_tolerance_skipped(self):
        geometry = FramebufferGeometry(width=1872, height=1404, size_tolerance=PAGE)
        records = [rec(0x30000000, FRAME + 2 * PAGE)]
        with pytest.raises(FramebufferNotFound):
            select_framebuffer(ProcessHandle(1, tuple(records)), geometry)

    def test_header_offset_added(self):
        geometry = FramebufferGeometry(width=1872, height=1404, header_offset=7)
        records = [rec(0x30000000, FRAME + PAGE)]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), geometry)
        assert region.base_address == 0x30000007

    def test_exact_frame_ignores_header_offset(self):
        geometry = FramebufferGeometry(width=1872, height=1404, header_offset=7, size_tolerance=0)
        region = select_framebuffer(ProcessHandle(1, (rec(0x30000000, FRAME),)), geometry)
        assert region.base_address == 0x30000000

    def test_default_config_finds_frame_sized_mapping(self):
        geometry = CaptureConfig().geometry
        records = noise_records() + [rec(0x30000000, geometry.frame_bytes)]
        region = select_framebuffer(ProcessHandle(1, tuple(records)), geometry)
        assert region.base_address == 0x30000000
        assert region.byte_length == geometry.frame_bytes

    def test_default_config_double_buffer(self):
        geometry = CaptureConfig().geometry
        records = [rec(0x30000000, 2 * geometry.frame_bytes)]
        assert select_framebuffer(ProcessHandle(1, tuple(records)), geometry).base_address == 0x30000000

    def test_default_config_header_slice(self):
        geometry = CaptureConfig().geometry
        records = [rec(0x30000000, geometry.frame_bytes + PAGE)]
        assert select_framebuffer(ProcessHandle(1, tuple(records)), geometry).base_address == 0x30000007

    def test_region_carries_rotation(self):
        geometry = FramebufferGeometry(width=1872, height=1404, rotation=270)
        region = select_framebuffer(ProcessHandle(9, (rec(0x30000000, FRAME),)), geometry)
        assert region.rotation == 270
        assert region.pid == 9


class TestRanking:
    def test_mapping_after_device_node_wins_tie(self, rm2_sized):
        records = [
            rec(0x30000000, FRAME + PAGE),
            rec(0x40000000, PAGE, perms="rw-s", label="/dev/fb0"),
            rec(0x40001000, FRAME + PAGE),
        ]
        ranked = rank_candidates(records, rm2_sized)
        assert [c.record.start for c in ranked] == [0x40001000, 0x30000000]
        assert ranked[0].follows_device

    def test_lower_address_breaks_remaining_ties(self, rm2_sized):
        records = [rec(0x50000000, FRAME), rec(0x30000000, FRAME)]
        ranked = rank_candidates(records, rm2_sized)
        assert ranked[0].record.start == 0x30000000

    def test_ranking_independent_of_listing_order(self, rm2_sized):
        records = [rec(0x30000000, FRAME), rec(0x40000000, 2 * FRAME), rec(0x50000000, FRAME + PAGE)]
        forward = rank_candidates(records, rm2_sized)
        backward = rank_candidates(list(reversed(records)), rm2_sized)
        assert [c.record.start for c in forward] == [c.record.start for c in backward]


class TestLocateFramebuffer:
    def test_finds_process_and_region(self, rm2_sized):
        remote = FakeRemote(
            processes=[(1, "init"), (321, "xochitl"), (400, "sshd")],
            maps={321: noise_records() + [rec(0x30000000, FRAME)]},
        )
        region = locate_framebuffer(remote, "xochitl", rm2_sized)
        assert region.pid == 321
        assert region.base_address == 0x30000000

    def test_process_not_found(self, rm2_sized):
        remote = FakeRemote(processes=[(1, "init")])
        with pytest.raises(ProcessNotFound):
            locate_framebuffer(remote, "xochitl", rm2_sized)

    def test_name_must_match_exactly(self, rm2_sized):
        remote = FakeRemote(processes=[(5, "xochitl-helper"), (6, "xochit")])
        with pytest.raises(ProcessNotFound):
            locate_framebuffer(remote, "xochitl", rm2_sized)

    def test_lowest_pid_wins(self, rm2_sized):
        remote = FakeRemote(
            processes=[(900, "xochitl"), (300, "xochitl")],
            maps={
                300: [rec(0x30000000, FRAME)],
                900: [rec(0x60000000, FRAME)],
            },
        )
        assert locate_framebuffer(remote, "xochitl", rm2_sized).pid == 300

    def test_falls_through_to_pid_holding_framebuffer(self, rm2_sized):
        remote = FakeRemote(
            processes=[(300, "xochitl"), (900, "xochitl")],
            maps={300: noise_records(), 900: [rec(0x60000000, FRAME)]},
        )
        region = locate_framebuffer(remote, "xochitl", rm2_sized)
        assert region.pid == 900
        assert region.base_address == 0x60000000

    def test_framebuffer_not_found_in_any_process(self, rm2_sized):
        remote = FakeRemote(
            processes=[(300, "xochitl"), (900, "xochitl")],
            maps={300: noise_records(), 900: noise_records()},
        )
        with pytest.raises(FramebufferNotFound):
            locate_framebuffer(remote, "xochitl", rm2_sized)

    def test_exited_process_skipped(self, rm2_sized):
        remote = FakeRemote(
            processes=[(300, "xochitl"), (900, "xochitl")],
            maps={900: [rec(0x60000000, FRAME)]},
        )
        read_map = remote.read_memory_map

        def read_memory_map(pid):
            if pid == 300:
                raise ProcessNotFound("cannot read memory map of 300: No such file or directory")
            return read_map(pid)

        remote.read_memory_map = read_memory_map
        assert locate_framebuffer(remote, "xochitl", rm2_sized).pid == 900

    def test_all_processes_exited(self, rm2_sized):
        remote = FakeRemote(processes=[(300, "xochitl")])

        def read_memory_map(pid):
            raise ProcessNotFound(f"cannot read memory map of {pid}")

        remote.read_memory_map = read_memory_map
        with pytest.raises(ProcessNotFound):
            locate_framebuffer(remote, "xochitl", rm2_sized)
