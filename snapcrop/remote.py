"""
Remote shell access to the tablet over SSH.

Only read-only commands are issued: the process table, memory maps and
``/proc/<pid>/mem`` are read with ``cat`` and ``dd``. Nothing attaches to
or stops the display process.
"""
from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

import lz4.frame
import paramiko
from loguru import logger
from paramiko import SSHClient

from snapcrop.config import RemoteTarget
from snapcrop.errors import (
    AccessDenied,
    ExtractTimeout,
    PartialRead,
    ProcessNotFound,
    RemoteConnectionError,
    UnknownDevice,
)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str


@dataclass(frozen=True)
class MemoryMapRecord:
    """One line of ``/proc/<pid>/maps``."""

    start: int
    end: int
    permissions: str
    offset: int = 0
    device: str = "00:00"
    inode: int = 0
    label: str = ""

    @property
    def size(self) -> int:
        return self.end - self.start

    @property
    def readable(self) -> bool:
        return self.permissions.startswith("r")


class RemoteCapability(Protocol):
    def list_processes(self) -> Sequence[ProcessInfo]: ...

    def read_memory_map(self, pid: int) -> Sequence[MemoryMapRecord]: ...

    def read_process_memory(
        self, pid: int, address: int, length: int, timeout: Optional[float] = None
    ) -> bytes: ...


def parse_process_list(text: str) -> List[ProcessInfo]:
    """Parse ``<pid> <comm>`` lines, skipping processes that vanished mid-listing."""
    processes = []
    for line in text.splitlines():
        parts = line.strip().split(maxsplit=1)
        if len(parts) != 2 or not parts[0].isdigit():
            continue
        processes.append(ProcessInfo(pid=int(parts[0]), name=parts[1].strip()))
    return processes


def parse_maps(text: str) -> List[MemoryMapRecord]:
    records = []
    for line in text.splitlines():
        fields = line.split(maxsplit=5)
        if len(fields) < 5 or "-" not in fields[0]:
            logger.debug("Skipping malformed maps line: {!r}", line)
            continue
        start, end = fields[0].split("-", 1)
        try:
            record = MemoryMapRecord(
                start=int(start, 16),
                end=int(end, 16),
                permissions=fields[1],
                offset=int(fields[2], 16),
                device=fields[3],
                inode=int(fields[4]),
                label=fields[5].strip() if len(fields) > 5 else "",
            )
        except ValueError:
            logger.debug("Skipping malformed maps line: {!r}", line)
            continue
        records.append(record)
    return records


def memory_read_command(pid: int, address: int, length: int, compress: Optional[str] = None) -> str:
    """
    Shell command that prints ``length`` bytes of process memory at ``address``.

    The first ``dd`` only seeks (``count=0``), the second reads the whole
    window as a single block so the copy is not done byte by byte.
    """
    cmd = f"{{ dd bs=1 skip={address} count=0 && dd bs={length} count=1; }} < /proc/{pid}/mem 2>/dev/null"
    if compress:
        cmd += f" | {compress}"
    return cmd


class SSHRemote:
    """The remote capability backed by a paramiko ``SSHClient``."""

    def __init__(self, client: SSHClient, lz4_path: Optional[str] = None) -> None:
        self.client = client
        self.lz4_path = lz4_path
        self._lz4_available: Optional[bool] = None

    @classmethod
    def connect(cls, target: RemoteTarget, lz4_path: Optional[str] = None) -> "SSHRemote":
        client = SSHClient()
        client.load_system_host_keys()
        try:
            client.connect(
                hostname=target.host,
                port=target.port,
                username=target.user,
                key_filename=target.key_filename,
                password=target.password,
                timeout=target.connect_timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise RemoteConnectionError(f"cannot connect to {target.user}@{target.host}: {e}") from e
        logger.info("Connected to {}", target.host)
        return cls(client, lz4_path=lz4_path)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SSHRemote":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def run(self, cmd: str, timeout: Optional[float] = None) -> Tuple[bytes, bytes, int]:
        """Run ``cmd`` and return ``(stdout, stderr, exit_status)``."""
        try:
            _, stdout, stderr = self.client.exec_command(cmd, timeout=timeout)
            out = stdout.read()
            err = stderr.read()
            status = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            raise ExtractTimeout(f"remote command timed out after {timeout}s") from e
        except (paramiko.SSHException, OSError) as e:
            raise RemoteConnectionError(f"remote command failed: {e}") from e
        return out, err, status

    def list_processes(self) -> List[ProcessInfo]:
        out, _, _ = self.run(
            'for p in /proc/[0-9]*; do echo "${p#/proc/} $(cat $p/comm 2>/dev/null)"; done'
        )
        return parse_process_list(out.decode(errors="replace"))

    def read_memory_map(self, pid: int) -> List[MemoryMapRecord]:
        out, err, status = self.run(f"cat /proc/{pid}/maps")
        if status != 0:
            message = err.decode(errors="replace").strip()
            if "denied" in message.lower():
                raise AccessDenied(f"cannot read memory map of {pid}: {message}")
            raise ProcessNotFound(f"cannot read memory map of {pid}: {message}")
        return parse_maps(out.decode(errors="replace"))

    def read_process_memory(
        self, pid: int, address: int, length: int, timeout: Optional[float] = None
    ) -> bytes:
        compress = self.lz4_path if self._has_lz4() else None
        out, err, status = self.run(memory_read_command(pid, address, length, compress), timeout=timeout)
        message = err.decode(errors="replace").strip()
        if "denied" in message.lower() or (status != 0 and not out):
            raise AccessDenied(f"cannot read memory of {pid}: {message or f'exit status {status}'}")
        if compress is None:
            return out
        if not out:
            return b""
        try:
            return lz4.frame.decompress(out)
        except RuntimeError as e:
            raise PartialRead(
                length, 0, f"lz4 stream of {len(out)} bytes is truncated or undecodable, expected {length} bytes"
            ) from e

    def read_machine(self) -> str:
        out, _, _ = self.run("cat /sys/devices/soc0/machine")
        return out.decode(errors="replace").strip()

    def _has_lz4(self) -> bool:
        if self.lz4_path is None:
            return False
        if self._lz4_available is None:
            out, _, _ = self.run(f"test -x {self.lz4_path} && echo yes")
            self._lz4_available = out.strip() == b"yes"
            if not self._lz4_available:
                logger.debug("{} not found on the device, transferring uncompressed", self.lz4_path)
        return self._lz4_available


def detect_device(remote: SSHRemote) -> str:
    """Return the device preset name for the connected tablet."""
    machine = remote.read_machine()
    logger.debug("Machine string: {!r}", machine)
    if "1" in machine:
        return "rm1"
    elif "2" in machine:
        return "rm2"
    raise UnknownDevice(f"machine {machine!r} is not recognized")
