"""
Exception hierarchy and per-file failure results.

Expected per-file failures during a batch (a vanished file, an image that
will not decode) are turned into :class:`FileFailure` values and counted;
exceptions are reserved for the single-file APIs and for programmer errors.
"""

from dataclasses import dataclass
from enum import Enum


class StorageJanitorError(Exception):
    """Base exception for all storage-janitor errors."""
    pass


class FileReadError(StorageJanitorError, OSError):
    """Raised when a file cannot be opened or read."""
    pass


class DecodeError(StorageJanitorError):
    """Raised when a file is not a valid image (or video) for analysis."""
    pass


class ScanPermissionError(StorageJanitorError, PermissionError):
    """Raised when a directory or file cannot be accessed."""
    pass


class ScanCancelled(StorageJanitorError):
    """Raised internally when a cancellation token fires."""
    pass


class ErrorKind(Enum):
    IO = "io"
    DECODE = "decode"
    PERMISSION = "permission"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FileFailure:
    """A file that was skipped during a batch, and why."""

    path: str
    kind: ErrorKind
    message: str

    @classmethod
    def from_exception(cls, path: str, error: BaseException) -> "FileFailure":
        """Map an exception raised while processing ``path`` to a failure record."""
        if isinstance(error, ScanCancelled):
            kind = ErrorKind.CANCELLED
        elif isinstance(error, PermissionError):
            kind = ErrorKind.PERMISSION
        elif isinstance(error, DecodeError):
            kind = ErrorKind.DECODE
        else:
            kind = ErrorKind.IO
        return cls(path=path, kind=kind, message=str(error) or type(error).__name__)
