"""Result records shared by the duplicate pipeline and the junk classifier."""

import mimetypes
import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Union

from storage_janitor.core.errors import FileFailure


@dataclass(frozen=True)
class FileRecord:
    """Immutable snapshot of a file supplied by the caller."""

    path: str
    size: int
    last_modified_ms: int
    mime_type: str = "application/octet-stream"

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "FileRecord":
        """
        Build a record from the filesystem.

        Args:
            path: File path

        Returns:
            FileRecord with size, mtime and a guessed mime type

        Raises:
            OSError: If the file cannot be stat'ed
        """
        path = Path(path).absolute()
        stat = path.stat()
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            path=str(path),
            size=stat.st_size,
            last_modified_ms=int(stat.st_mtime * 1000),
            mime_type=mime_type or "application/octet-stream",
        )


class MatchKind(Enum):
    """How the members of a duplicate group were matched."""

    EXACT = "exact"
    PERCEPTUAL = "perceptual"
    METADATA = "metadata"


def new_group_id() -> str:
    return f"dup_{uuid.uuid4().hex[:12]}"


@dataclass
class DuplicateGroup:
    """
    A set of two or more files considered copies of one another.

    Invariants are checked on construction: at least two files,
    ``keep_file`` is one of the member paths and ``total_size`` equals the
    sum of member sizes.
    """

    files: List[FileRecord]
    match_key: str
    match_kind: MatchKind
    keep_file: str
    id: str = field(default_factory=new_group_id)
    total_size: int = field(init=False)

    def __post_init__(self):
        if len(self.files) < 2:
            raise ValueError("A duplicate group needs at least two files")
        if self.keep_file not in {f.path for f in self.files}:
            raise ValueError(f"keep_file {self.keep_file!r} is not a member of the group")
        self.total_size = sum(f.size for f in self.files)

    @property
    def duplicate_count(self) -> int:
        return len(self.files)

    @property
    def reclaimable_size(self) -> int:
        """Bytes freed by removing every member except the kept file."""
        kept = next(f for f in self.files if f.path == self.keep_file)
        return self.total_size - kept.size

    def __repr__(self):
        return f"<DuplicateGroup {self.match_kind.value} count={len(self.files)} keep={self.keep_file}>"


@dataclass(frozen=True)
class JunkFile:
    path: str
    size: int
    last_modified_ms: int
    can_delete: bool
    reason: str


class CleaningPriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class JunkCategory:
    """A named bucket of cleanup candidates."""

    id: str
    name: str
    can_auto_clean: bool
    priority: CleaningPriority
    files: List[JunkFile] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def file_count(self) -> int:
        return len(self.files)


@dataclass
class DuplicateScanResult:
    groups: List[DuplicateGroup] = field(default_factory=list)
    failures: List[FileFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def error_count(self) -> int:
        return len(self.failures)

    @property
    def reclaimable_size(self) -> int:
        return sum(g.reclaimable_size for g in self.groups)


@dataclass
class JunkScanResult:
    categories: List[JunkCategory] = field(default_factory=list)
    failures: List[FileFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def error_count(self) -> int:
        return len(self.failures)

    @property
    def total_size(self) -> int:
        return sum(c.total_size for c in self.categories)

    def category(self, category_id: str) -> Optional[JunkCategory]:
        return next((c for c in self.categories if c.id == category_id), None)


@dataclass(frozen=True)
class ProgressEvent:
    """
    One step of a streaming scan.

    Every invocation ends with exactly one event whose ``is_terminal`` is
    True; its ``partial_result`` holds whatever was accumulated (complete on
    success, partial on cancellation or error).
    """

    percent_complete: float
    message: str
    processed_count: int = 0
    total_count: int = 0
    partial_result: Optional[Any] = None
    is_terminal: bool = False
    error: Optional[str] = None
    error_count: int = 0

    @property
    def succeeded(self) -> bool:
        cancelled = getattr(self.partial_result, "cancelled", False)
        return self.is_terminal and self.error is None and not cancelled
