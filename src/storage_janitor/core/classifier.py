"""
Junk classification of directory trees.

The walk is iterative (an explicit stack of pending directories) and checks
for cancellation before every entry. Every file lands in at most one
category; the first matching rule wins:

    temp file > obsolete package archive > large file > residual app data
"""

import fnmatch
import os
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from storage_janitor.core.errors import FileFailure, ScanCancelled, ScanPermissionError
from storage_janitor.core.models import (
    CleaningPriority,
    JunkCategory,
    JunkFile,
    JunkScanResult,
    ProgressEvent,
)
from storage_janitor.core.packages import PackageRegistry, StaticPackageRegistry
from storage_janitor.core.progress import CancellationToken, ProgressThrottle
from storage_janitor.core.safety import DefaultSafetyPolicy, SafetyPolicy
from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, Path]

MB = 1024 * 1024

CACHE = "cache"
TEMP = "temp"
RESIDUAL = "residual"
APK = "apk"
EMPTY_FOLDERS = "empty_folders"
LARGE_FILES = "large_files"

# id, display name, can_auto_clean, priority
CATEGORY_CATALOGUE = [
    (CACHE, "Cache Files", True, CleaningPriority.HIGH),
    (TEMP, "Temporary Files", True, CleaningPriority.HIGH),
    (RESIDUAL, "Residual Files", True, CleaningPriority.MEDIUM),
    (APK, "Obsolete APK Files", True, CleaningPriority.MEDIUM),
    (EMPTY_FOLDERS, "Empty Folders", True, CleaningPriority.LOW),
    (LARGE_FILES, "Large Files", False, CleaningPriority.LOW),
]

CACHE_DIRECTORY_NAMES = {
    "cache", ".cache", "tmp", ".tmp", "temp", ".temp", ".thumbnails", "thumbs", ".thumbs",
}

TEMP_EXTENSIONS = {
    ".tmp", ".temp", ".bak", ".backup", ".old", ".log", ".crash",
    ".dmp", ".trace", ".pid", ".lock", ".swp", ".part",
}

JUNK_PATTERNS = [
    "~*", "*.tmp", "*.temp", "*.bak", "*.old", "*.log", "*.pid",
    "*.lock", "*.swp", "core.*", "*.crash", "thumbs.db", ".ds_store",
]

APK_EXTENSIONS = {".apk", ".xapk", ".apks"}

RESIDUAL_ROOTS = ["/Android/data/", "/Android/obb/", "/.android_secure/"]

ESTIMATE_ENTRY_LIMIT = 10000
ESTIMATE_MINIMUM = 1000

WALK_START_PERCENT = 5.0
WALK_SPAN_PERCENT = 85.0
WALK_CAP_PERCENT = 90.0
FINALIZE_PERCENT = 95.0


class ScanState(Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


def is_cache_directory(name: str) -> bool:
    return name.lower() in CACHE_DIRECTORY_NAMES


def is_temp_file(name: str) -> bool:
    """True for temp extensions, tmp/temp prefixes and common junk patterns."""
    lowered = name.lower()
    if os.path.splitext(lowered)[1] in TEMP_EXTENSIONS:
        return True
    if lowered.startswith(("tmp", "temp")) or ".tmp." in lowered:
        return True
    return any(fnmatch.fnmatchcase(lowered, pattern) for pattern in JUNK_PATTERNS)


def is_package_archive(name: str) -> bool:
    return os.path.splitext(name.lower())[1] in APK_EXTENSIONS


def residual_package(path: str) -> Optional[str]:
    """
    Owning package of a file under an app-private data root.

    Args:
        path: Absolute file path

    Returns:
        Package name for ``.../Android/data/<pkg>/...`` style paths, else None
    """
    normalized = path.replace("\\", "/")
    for root in RESIDUAL_ROOTS:
        index = normalized.find(root)
        if index == -1:
            continue
        rest = normalized[index + len(root):]
        package, sep, _ = rest.partition("/")
        if package and sep:
            return package
    return None


class _Scan:
    """Accumulated state of one classifier scan."""

    def __init__(self, token: CancellationToken):
        self.token = token
        self.files: Dict[str, List[JunkFile]] = {cid: [] for cid, _, _, _ in CATEGORY_CATALOGUE}
        self.claimed: Set[str] = set()
        self.failures: List[FileFailure] = []
        self.scanned = 0
        self.percent = 0.0

    def checkpoint(self) -> None:
        if self.token.is_cancelled:
            raise ScanCancelled("Junk scan cancelled")

    def record(self, category_id: str, junk: JunkFile) -> None:
        if junk.path in self.claimed:
            return
        self.claimed.add(junk.path)
        self.files[category_id].append(junk)

    def fail(self, path: str, error: BaseException) -> None:
        logger.warning(f"Skipping {path}: {error}")
        self.failures.append(FileFailure.from_exception(path, error))


class DirectoryClassifier:
    """Walks directory trees and buckets disposable files into junk categories."""

    def __init__(
        self,
        safety_policy: Optional[SafetyPolicy] = None,
        package_registry: Optional[PackageRegistry] = None,
        large_file_threshold: int = 100 * MB,
        progress_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the classifier.

        Args:
            safety_policy: Decides what may be scanned and what may be deleted
            package_registry: Installed packages, for archive and residual rules
            large_file_threshold: Size in bytes above which a file is "large"
            progress_interval: Minimum seconds between walk progress events
            clock: Monotonic clock used for throttling
        """
        self.safety_policy = safety_policy or DefaultSafetyPolicy()
        self.package_registry = package_registry or StaticPackageRegistry()
        self.large_file_threshold = large_file_threshold
        self.progress_interval = progress_interval
        self.clock = clock
        self.state = ScanState.PENDING

    def scan(
        self,
        roots: Iterable[PathLike],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[ProgressEvent]:
        """
        Classify everything under ``roots``.

        Args:
            roots: Directories to walk
            cancel_token: Optional cancellation token

        Yields:
            Throttled progress events, then one terminal event carrying a
            JunkScanResult (partial if cancelled or aborted)
        """
        scan = _Scan(cancel_token or CancellationToken())
        self.state = ScanState.SCANNING

        yield self._event(scan, 0.0, "Initializing scan...")
        try:
            scannable = [str(Path(r).absolute()) for r in roots]
            scannable = [r for r in scannable if self._can_scan(scan, r)]
            estimated = self.estimate_total_files(scannable, scan.token)
            scan.checkpoint()
            yield self._event(scan, WALK_START_PERCENT, "Scanning directories...", estimated)

            throttle = ProgressThrottle(self.progress_interval, self.clock)
            for root in scannable:
                for current in self._walk(scan, root):
                    if throttle.ready():
                        percent = min(
                            WALK_START_PERCENT + scan.scanned / estimated * WALK_SPAN_PERCENT,
                            WALK_CAP_PERCENT,
                        )
                        yield self._event(
                            scan, percent, f"Scanning: {os.path.basename(current)}", estimated
                        )
        except ScanCancelled:
            logger.info("Junk scan cancelled")
            self.state = ScanState.CANCELLED
            yield self._terminal(scan, "Scan cancelled", cancelled=True)
            return
        except Exception as e:
            logger.error(f"Junk scan failed: {e}")
            self.state = ScanState.ABORTED
            yield self._terminal(scan, f"Scan failed: {e}", error=str(e))
            return

        yield self._event(scan, FINALIZE_PERCENT, "Finalizing scan results...", estimated)
        self.state = ScanState.COMPLETED
        scan.percent = 100.0
        yield self._terminal(scan, "Scan completed")

    def _can_scan(self, scan: _Scan, root: str) -> bool:
        if self.safety_policy.is_safe_to_scan(root):
            return True
        scan.fail(root, ScanPermissionError(f"Not safe to scan: {root}"))
        return False

    def estimate_total_files(
        self, roots: List[str], cancel_token: Optional[CancellationToken] = None
    ) -> int:
        """
        Cheap file count used as the progress denominator.

        At most ESTIMATE_ENTRY_LIMIT entries are visited; the result is never
        below ESTIMATE_MINIMUM.
        """
        count = 0
        visited = 0
        stack = list(reversed(roots))
        while stack and visited < ESTIMATE_ENTRY_LIMIT:
            if cancel_token is not None and cancel_token.is_cancelled:
                break
            directory = stack.pop()
            try:
                with os.scandir(directory) as entries:
                    for entry in entries:
                        visited += 1
                        if entry.is_dir(follow_symlinks=False):
                            stack.append(entry.path)
                        elif entry.is_file(follow_symlinks=False):
                            count += 1
                        if visited >= ESTIMATE_ENTRY_LIMIT:
                            break
            except OSError as e:
                logger.debug(f"Estimate skipped {directory}: {e}")
        return max(count, ESTIMATE_MINIMUM)

    def _walk(self, scan: _Scan, root: str) -> Iterator[str]:
        """Process every entry below ``root``, yielding each processed path."""
        stack = [root]
        while stack:
            scan.checkpoint()
            directory = stack.pop()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                scan.fail(directory, e)
                continue

            subdirectories = []
            for entry in entries:
                scan.checkpoint()
                scan.scanned += 1
                try:
                    if entry.is_symlink():
                        continue
                    if entry.is_dir():
                        if self._handle_directory(scan, entry.path):
                            subdirectories.append(entry.path)
                    elif entry.is_file():
                        self._handle_file(scan, entry.path)
                except OSError as e:
                    scan.fail(entry.path, e)
                yield entry.path

            # Reversed so directories are popped in name order
            stack.extend(reversed(subdirectories))

    def _handle_directory(self, scan: _Scan, path: str) -> bool:
        """Record cache and empty directories; return True if the walk should descend."""
        if not self.safety_policy.is_safe_to_scan(path):
            logger.debug(f"Not descending into {path}")
            return False

        if is_cache_directory(os.path.basename(path)):
            self._collect_cache(scan, path)
            return False

        with os.scandir(path) as it:
            is_empty = next(it, None) is None
        if is_empty:
            if self.safety_policy.is_safe_to_delete(path):
                stat = os.stat(path)
                scan.record(
                    EMPTY_FOLDERS,
                    JunkFile(
                        path=path,
                        size=0,
                        last_modified_ms=int(stat.st_mtime * 1000),
                        can_delete=True,
                        reason="Empty directory",
                    ),
                )
            return False
        return True

    def _collect_cache(self, scan: _Scan, cache_dir: str) -> None:
        def on_error(error: OSError) -> None:
            scan.fail(error.filename or cache_dir, error)

        for directory, dirnames, filenames in os.walk(cache_dir, onerror=on_error):
            dirnames[:] = [
                d for d in sorted(dirnames)
                if self.safety_policy.is_safe_to_scan(os.path.join(directory, d))
            ]
            for name in sorted(filenames):
                scan.checkpoint()
                scan.scanned += 1
                path = os.path.join(directory, name)
                if os.path.islink(path):
                    continue
                try:
                    scan.record(CACHE, self._junk_file(path, "Cache file"))
                except OSError as e:
                    scan.fail(path, e)

    def _handle_file(self, scan: _Scan, path: str) -> None:
        match = self.classify_file(path)
        if match is not None:
            category_id, junk = match
            scan.record(category_id, junk)

    def classify_file(self, path: str) -> Optional[Tuple[str, JunkFile]]:
        """
        Decide which category, if any, a single file belongs to.

        Args:
            path: Absolute file path

        Returns:
            (category id, JunkFile) or None if the file is not junk

        Raises:
            OSError: If the file cannot be stat'ed
        """
        name = os.path.basename(path)

        if is_temp_file(name):
            return TEMP, self._junk_file(path, "Temporary file")

        if is_package_archive(name):
            reason = self._obsolete_archive_reason(path)
            if reason is not None:
                return APK, self._junk_file(path, reason)

        size = os.path.getsize(path)
        if size > self.large_file_threshold:
            return LARGE_FILES, self._junk_file(path, "Large file")

        package = residual_package(path)
        if package is not None and not self.package_registry.is_package_installed(package):
            return RESIDUAL, self._junk_file(path, f"Residual file of uninstalled app {package}")

        return None

    def _obsolete_archive_reason(self, path: str) -> Optional[str]:
        info = self.package_registry.read_archive(path)
        if info is None:
            return "Unreadable package archive"
        installed = self.package_registry.installed_version_code(info.package_name)
        if installed is not None and installed >= info.version_code:
            return f"Obsolete APK file ({info.package_name} {info.version_code} installed as {installed})"
        return None

    def _junk_file(self, path: str, reason: str) -> JunkFile:
        stat = os.stat(path)
        return JunkFile(
            path=path,
            size=stat.st_size,
            last_modified_ms=int(stat.st_mtime * 1000),
            can_delete=self.safety_policy.is_safe_to_delete(path),
            reason=reason,
        )

    @staticmethod
    def _event(scan: _Scan, percent: float, message: str, total: int = 0) -> ProgressEvent:
        scan.percent = max(scan.percent, percent)
        return ProgressEvent(
            percent_complete=scan.percent,
            message=message,
            processed_count=scan.scanned,
            total_count=total,
            error_count=len(scan.failures),
        )

    @staticmethod
    def _build_categories(scan: _Scan) -> List[JunkCategory]:
        categories = []
        for category_id, name, can_auto_clean, priority in CATEGORY_CATALOGUE:
            unique = {f.path: f for f in scan.files[category_id]}
            files = sorted(unique.values(), key=lambda f: (-f.size, f.path))
            categories.append(
                JunkCategory(
                    id=category_id,
                    name=name,
                    can_auto_clean=can_auto_clean,
                    priority=priority,
                    files=files,
                )
            )
        return categories

    def _terminal(
        self,
        scan: _Scan,
        message: str,
        cancelled: bool = False,
        error: Optional[str] = None,
    ) -> ProgressEvent:
        result = JunkScanResult(
            categories=self._build_categories(scan),
            failures=list(scan.failures),
            cancelled=cancelled,
        )
        return ProgressEvent(
            percent_complete=scan.percent,
            message=message,
            processed_count=scan.scanned,
            total_count=scan.scanned,
            partial_result=result,
            is_terminal=True,
            error=error,
            error_count=result.error_count,
        )
