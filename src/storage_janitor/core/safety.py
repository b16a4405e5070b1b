"""Safety predicates consulted before scanning or flagging anything as deletable."""

import fnmatch
import os
import time
from pathlib import Path
from typing import Callable, Iterable, Protocol, Union

from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, Path]

PROTECTED_DIRECTORIES = [
    "/system",
    "/proc",
    "/dev",
    "/sys",
    "/sbin",
    "/vendor",
    "/boot",
    "/recovery",
    "/data/system",
    "/data/misc",
    "/cache/recovery",
    "/android_secure",
]

PROTECTED_FILE_PATTERNS = [
    "*.so",
    "*.dex",
    "*.odex",
    "*.art",
    "build.prop",
    "default.prop",
    "*.rc",
]

IN_PROGRESS_EXTENSIONS = (".part", ".crdownload")

# Files newer than RECENT_FILE_SECONDS in these folders are left alone
PROTECTED_USER_PATHS = [
    "/dcim/camera/",
    "/pictures/screenshots/",
    "/pictures/camera/",
    "/documents/",
    "/download/",
    "/music/",
    "/movies/",
]
RECENT_FILE_SECONDS = 24 * 60 * 60


class SafetyPolicy(Protocol):
    def is_safe_to_delete(self, path: PathLike) -> bool:
        ...

    def is_safe_to_scan(self, directory: PathLike) -> bool:
        ...


def _normalize(path: PathLike) -> str:
    return os.path.abspath(str(path)).replace("\\", "/").lower()


def _under(path: str, root: str) -> bool:
    return path == root or path.startswith(root + "/")


class DefaultSafetyPolicy:
    """
    Conservative policy for a local filesystem.

    A ``False`` answer is authoritative for the classifier, so anything
    doubtful is refused.
    """

    def __init__(
        self,
        protected_folders: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the policy.

        Args:
            protected_folders: Extra folder names or paths that must never be touched
            clock: Wall clock in seconds, used for the recent-file rule
        """
        self.protected_folders = [str(p).replace("\\", "/").lower() for p in protected_folders]
        self.clock = clock

    def is_system_path(self, path: PathLike) -> bool:
        normalized = _normalize(path)
        return any(_under(normalized, root) for root in PROTECTED_DIRECTORIES)

    def is_user_protected(self, path: PathLike) -> bool:
        normalized = _normalize(path)
        return any(folder and folder in normalized for folder in self.protected_folders)

    def is_protected_file(self, path: PathLike) -> bool:
        name = os.path.basename(str(path)).lower()
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in PROTECTED_FILE_PATTERNS):
            return True
        return name.endswith(IN_PROGRESS_EXTENSIONS)

    def is_recent_user_file(self, path: PathLike) -> bool:
        normalized = _normalize(path)
        if not any(marker in normalized for marker in PROTECTED_USER_PATHS):
            return False
        try:
            age = self.clock() - os.path.getmtime(path)
        except OSError:
            return False
        return age < RECENT_FILE_SECONDS

    def is_safe_to_delete(self, path: PathLike) -> bool:
        """
        Check whether a file or directory may be offered for deletion.

        Args:
            path: File or directory

        Returns:
            False for system paths, protected names, in-progress downloads,
            fresh files in user media folders, user-protected folders and
            paths the process cannot delete
        """
        if self.is_system_path(path) or self.is_user_protected(path):
            return False
        if self.is_protected_file(path) or self.is_recent_user_file(path):
            return False
        parent = os.path.dirname(os.path.abspath(str(path)))
        return os.access(parent, os.W_OK)

    def is_safe_to_scan(self, directory: PathLike) -> bool:
        """
        Check whether a directory may be walked.

        Args:
            directory: Directory path

        Returns:
            True if it is a readable directory outside system and protected locations
        """
        if self.is_system_path(directory) or self.is_user_protected(directory):
            logger.debug(f"Refusing to scan protected directory: {directory}")
            return False
        return os.path.isdir(directory) and os.access(directory, os.R_OK | os.X_OK)
