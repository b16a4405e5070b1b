"""
Multi-phase duplicate detection.

Phases run in order, each inside its own slice of the 0-100 progress range:

    init         0-5
    size filter  5-10
    exact hash   10-50
    perceptual   50-80
    video        80-95
    finalize     95-100

A file ends up in at most one group: files placed by the exact phase are
not considered by later phases.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Set, Tuple, Union

from storage_janitor.core.errors import DecodeError, FileFailure, ScanCancelled
from storage_janitor.core.hashing import HashService
from storage_janitor.core.models import (
    DuplicateGroup,
    DuplicateScanResult,
    FileRecord,
    MatchKind,
    ProgressEvent,
)
from storage_janitor.core.progress import CancellationToken, scaled_percent
from storage_janitor.core.selector import BestFileSelector
from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, Path]

INIT_BAND = (0.0, 5.0)
SIZE_BAND = (5.0, 10.0)
EXACT_BAND = (10.0, 50.0)
PERCEPTUAL_BAND = (50.0, 80.0)
VIDEO_BAND = (80.0, 95.0)
FINALIZE_BAND = (95.0, 100.0)


@dataclass(frozen=True)
class VideoMetadata:
    duration_ms: int
    width: int
    height: int

    @property
    def signature(self) -> Tuple[int, int, int]:
        return (self.duration_ms, self.width, self.height)


class VideoMetadataReader(Protocol):
    def read(self, path: PathLike) -> Optional[VideoMetadata]:
        ...


class NullVideoMetadataReader:
    """Reader used when no video probing backend is configured."""

    def read(self, path: PathLike) -> Optional[VideoMetadata]:
        return None


def compare_frames(candidates: List[FileRecord]) -> List[List[FileRecord]]:
    """
    Confirm which videos sharing a metadata signature are really the same.

    Frame sampling is not implemented, so no candidate is ever confirmed.
    """
    return []


@dataclass
class _PendingGroup:
    files: List[FileRecord]
    match_key: str
    match_kind: MatchKind


@dataclass
class _Run:
    """Mutable state of one detect() invocation."""

    token: CancellationToken
    result: DuplicateScanResult = field(default_factory=DuplicateScanResult)
    pending: List[_PendingGroup] = field(default_factory=list)
    grouped: Set[str] = field(default_factory=set)
    failed: Set[str] = field(default_factory=set)
    percent: float = 0.0
    total: int = 0

    def checkpoint(self) -> None:
        if self.token.is_cancelled:
            raise ScanCancelled("Duplicate scan cancelled")

    def fail(self, record: FileRecord, error: BaseException) -> None:
        logger.warning(f"Skipping {record.path}: {error}")
        self.failed.add(record.path)
        self.result.failures.append(FileFailure.from_exception(record.path, error))

    def add_group(self, files: List[FileRecord], key: str, kind: MatchKind) -> None:
        self.pending.append(_PendingGroup(files, key, kind))
        self.grouped.update(f.path for f in files)

    def event(self, percent: float, message: str, processed: int = 0, total: int = 0) -> ProgressEvent:
        self.percent = max(self.percent, percent)
        return ProgressEvent(
            percent_complete=self.percent,
            message=message,
            processed_count=processed,
            total_count=total,
            error_count=self.result.error_count,
        )


class DuplicateDetectionPipeline:
    """Finds exact and visually similar duplicates in a set of files."""

    def __init__(
        self,
        hash_service: Optional[HashService] = None,
        selector: Optional[BestFileSelector] = None,
        similarity_threshold: int = 5,
        video_reader: Optional[VideoMetadataReader] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            hash_service: Hash provider (shared cache allowed)
            selector: Keep-file policy
            similarity_threshold: Max Hamming distance for perceptual matches
            video_reader: Source of video duration/resolution
        """
        self.hash_service = hash_service or HashService()
        self.selector = selector or BestFileSelector()
        self.similarity_threshold = similarity_threshold
        self.video_reader = video_reader or NullVideoMetadataReader()

    def detect(
        self,
        records: Iterable[FileRecord],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[ProgressEvent]:
        """
        Run every phase over ``records``.

        Per-file failures are recorded and skipped. Cancellation stops the
        current phase and finalizes what was found so far.

        Args:
            records: Candidate files
            cancel_token: Optional cancellation token

        Yields:
            Non-decreasing progress events, ending with exactly one terminal
            event whose partial_result is a DuplicateScanResult
        """
        run = _Run(token=cancel_token or CancellationToken())

        yield run.event(INIT_BAND[0], "Initializing duplicate scan...")
        try:
            candidates = list(records)
            run.total = len(candidates)
        except Exception as e:
            logger.error(f"Could not obtain file inventory: {e}")
            yield self._terminal(run, f"Scan failed: {e}", error=str(e))
            return
        yield run.event(INIT_BAND[1], f"Prepared {len(candidates)} files", 0, len(candidates))

        try:
            run.checkpoint()
            buckets = self._size_phase(candidates)
            yield run.event(SIZE_BAND[1], f"{len(buckets)} size buckets with possible duplicates")

            run.checkpoint()
            yield from self._exact_phase(run, buckets)
            yield from self._perceptual_phase(run, candidates)
            yield from self._video_phase(run, candidates)
        except ScanCancelled:
            logger.info("Duplicate scan cancelled")
            run.result.cancelled = True
        except Exception as e:
            logger.error(f"Duplicate scan failed: {e}")
            run.result.groups = self._finalize(run)
            yield self._terminal(run, f"Scan failed: {e}", error=str(e))
            return

        if not run.result.cancelled:
            yield run.event(FINALIZE_BAND[0], "Selecting files to keep...")
        run.result.groups = self._finalize(run)

        if run.result.cancelled:
            yield self._terminal(run, "Scan cancelled")
        else:
            run.percent = FINALIZE_BAND[1]
            yield self._terminal(run, f"Found {len(run.result.groups)} duplicate groups")

    @staticmethod
    def _size_phase(candidates: List[FileRecord]) -> List[List[FileRecord]]:
        by_size: Dict[int, List[FileRecord]] = defaultdict(list)
        for record in candidates:
            if record.size > 0:
                by_size[record.size].append(record)
        return [bucket for bucket in by_size.values() if len(bucket) > 1]

    def _exact_phase(self, run: _Run, buckets: List[List[FileRecord]]) -> Iterator[ProgressEvent]:
        total = sum(len(b) for b in buckets)
        done = 0
        for bucket in buckets:
            by_hash: Dict[str, List[FileRecord]] = defaultdict(list)
            for record in bucket:
                run.checkpoint()
                try:
                    by_hash[self.hash_service.content_hash(record.path)].append(record)
                except OSError as e:
                    run.fail(record, e)
                done += 1
                yield run.event(
                    scaled_percent(*EXACT_BAND, done, total),
                    f"Hashing: {record.name}",
                    done,
                    total,
                )
            for digest, members in by_hash.items():
                if len(members) > 1:
                    run.add_group(members, digest, MatchKind.EXACT)
        logger.info(f"Exact phase: {len(run.pending)} groups")

    def _perceptual_phase(self, run: _Run, candidates: List[FileRecord]) -> Iterator[ProgressEvent]:
        images = [
            r for r in candidates
            if r.is_image and r.size > 0 and r.path not in run.grouped and r.path not in run.failed
        ]
        hash_end = PERCEPTUAL_BAND[0] + (PERCEPTUAL_BAND[1] - PERCEPTUAL_BAND[0]) * 2 / 3

        hashed = []
        for index, record in enumerate(images, start=1):
            run.checkpoint()
            try:
                hashed.append((record, self.hash_service.perceptual_hash(record.path)))
            except (DecodeError, OSError) as e:
                run.fail(record, e)
            yield run.event(
                scaled_percent(PERCEPTUAL_BAND[0], hash_end, index, len(images)),
                f"Fingerprinting: {record.name}",
                index,
                len(images),
            )

        used: Set[str] = set()
        found = 0
        for index, (seed, seed_hash) in enumerate(hashed):
            run.checkpoint()
            if seed.path in used:
                continue
            members = [seed]
            for other, other_hash in hashed[index + 1:]:
                if other.path in used:
                    continue
                if self.hash_service.hamming_distance(seed_hash, other_hash) <= self.similarity_threshold:
                    members.append(other)
            if len(members) > 1:
                used.update(m.path for m in members)
                run.add_group(members, str(seed_hash), MatchKind.PERCEPTUAL)
                found += 1
            yield run.event(
                scaled_percent(hash_end, PERCEPTUAL_BAND[1], index + 1, len(hashed)),
                "Comparing similar images...",
                index + 1,
                len(hashed),
            )
        yield run.event(PERCEPTUAL_BAND[1], f"Perceptual phase: {found} groups")

    def _video_phase(self, run: _Run, candidates: List[FileRecord]) -> Iterator[ProgressEvent]:
        videos = [
            r for r in candidates
            if r.is_video and r.size > 0 and r.path not in run.grouped and r.path not in run.failed
        ]
        signatures: Dict[Tuple[int, int, int], List[FileRecord]] = defaultdict(list)
        for index, record in enumerate(videos, start=1):
            run.checkpoint()
            try:
                metadata = self.video_reader.read(record.path)
            except (DecodeError, OSError) as e:
                run.fail(record, e)
                metadata = None
            if metadata is not None:
                signatures[metadata.signature].append(record)
            yield run.event(
                scaled_percent(*VIDEO_BAND, index, len(videos)),
                f"Reading video metadata: {record.name}",
                index,
                len(videos),
            )

        for (duration_ms, width, height), bucket in signatures.items():
            if len(bucket) < 2:
                continue
            run.checkpoint()
            for confirmed in compare_frames(bucket):
                run.add_group(confirmed, f"{duration_ms}ms:{width}x{height}", MatchKind.METADATA)
        yield run.event(VIDEO_BAND[1], "Video phase complete")

    def _finalize(self, run: _Run) -> List[DuplicateGroup]:
        groups = []
        for pending in run.pending:
            members = list({f.path: f for f in pending.files}.values())
            if len(members) < 2:
                continue
            keep = self.selector.select(members, pending.match_kind)
            groups.append(
                DuplicateGroup(
                    files=members,
                    match_key=pending.match_key,
                    match_kind=pending.match_kind,
                    keep_file=keep.path,
                )
            )
        groups.sort(key=lambda g: g.total_size, reverse=True)
        return groups

    @staticmethod
    def _terminal(run: _Run, message: str, error: Optional[str] = None) -> ProgressEvent:
        return ProgressEvent(
            percent_complete=run.percent,
            message=message,
            processed_count=run.total,
            total_count=run.total,
            partial_result=run.result,
            is_terminal=True,
            error=error,
            error_count=run.result.error_count,
        )
