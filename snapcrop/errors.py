"""Exceptions raised by the capture pipeline."""

from typing import Optional


class SnapcropError(Exception):
    """Base class for every pipeline failure."""

    exit_code = 1


class ConfigError(SnapcropError):
    """Raised when the configuration cannot be loaded or validated."""

    exit_code = 7


class RemoteConnectionError(SnapcropError):
    """Raised when the tablet cannot be reached or the login is refused."""

    exit_code = 2


class LocateError(SnapcropError):
    exit_code = 3


class ProcessNotFound(LocateError):
    """Raised when no process with the requested name is running."""


class FramebufferNotFound(LocateError):
    """Raised when no memory mapping looks like a framebuffer."""


class UnknownDevice(LocateError):
    """Raised when the machine string does not name a known tablet."""


class ExtractError(SnapcropError):
    exit_code = 4


class PartialRead(ExtractError):
    """Raised when the remote read returned fewer bytes than requested."""

    def __init__(self, expected: int, received: int, message: Optional[str] = None):
        super().__init__(message or f"expected {expected} bytes, received {received}")
        self.expected = expected
        self.received = received


class ExtractTimeout(ExtractError):
    """Raised when the remote read did not finish in time."""


class AccessDenied(ExtractError):
    """Raised when the remote side refused to read the process memory."""


class DecodeError(SnapcropError):
    """Raised when a raw buffer does not fit the framebuffer geometry."""

    exit_code = 5


class ExportError(SnapcropError):
    """Raised when writing the full or the cropped image failed.

    ``result`` tells which of the two writes went through.
    """

    exit_code = 6

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
