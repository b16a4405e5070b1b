"""Choosing which file of a duplicate group to keep."""

from typing import Dict, List, Optional

from storage_janitor.core.errors import DecodeError
from storage_janitor.core.models import FileRecord, MatchKind
from storage_janitor.core.quality import BlurQualityAnalyzer
from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

# Lower value = more worth keeping
LOCATION_PRIORITIES = [
    ("/dcim/", 1),
    ("/pictures/", 2),
    ("/download/", 3),
    ("/whatsapp/", 4),
    ("/telegram/", 4),
    ("/signal/", 4),
]
DEFAULT_LOCATION_PRIORITY = 5


def location_priority(path: str) -> int:
    """
    Rank a path by how canonical its location is.

    Args:
        path: File path (either separator style)

    Returns:
        1 for camera folders, 2 pictures, 3 downloads, 4 messaging media, else 5
    """
    normalized = path.replace("\\", "/").lower()
    for marker, priority in LOCATION_PRIORITIES:
        if marker in normalized:
            return priority
    return DEFAULT_LOCATION_PRIORITY


class BestFileSelector:
    """Deterministic keep-file policy for duplicate groups."""

    def __init__(self, analyzer: Optional[BlurQualityAnalyzer] = None):
        self.analyzer = analyzer or BlurQualityAnalyzer()

    def select_generic(self, files: List[FileRecord]) -> FileRecord:
        """Largest, then newest, then best location, then path."""
        if not files:
            raise ValueError("Cannot select from an empty group")
        ordered = sorted(
            files,
            key=lambda f: (-f.size, -f.last_modified_ms, location_priority(f.path), f.path),
        )
        return ordered[0]

    def select_image(self, files: List[FileRecord]) -> FileRecord:
        """Highest quality score, then largest, then newest, then path."""
        if not files:
            raise ValueError("Cannot select from an empty group")
        scores: Dict[str, float] = {f.path: self._quality(f) for f in files}
        ordered = sorted(
            files,
            key=lambda f: (-scores[f.path], -f.size, -f.last_modified_ms, f.path),
        )
        return ordered[0]

    def _quality(self, record: FileRecord) -> float:
        try:
            return self.analyzer.quality_score_for_path(record.path)
        except (DecodeError, OSError) as e:
            logger.debug(f"Quality unavailable for {record.path}: {e}")
            return 0.0

    def select(self, files: List[FileRecord], match_kind: MatchKind) -> FileRecord:
        """
        Pick the file to keep.

        Args:
            files: Group members
            match_kind: How the group was matched

        Returns:
            The member to keep
        """
        if match_kind is MatchKind.PERCEPTUAL:
            return self.select_image(files)
        return self.select_generic(files)
