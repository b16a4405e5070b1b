"""Core duplicate detection and junk classification engine."""

from storage_janitor.core.classifier import DirectoryClassifier, ScanState
from storage_janitor.core.detector import DuplicateDetectionPipeline, VideoMetadata
from storage_janitor.core.hashing import HashCache, HashService
from storage_janitor.core.inventory import FileInventory
from storage_janitor.core.models import (
    DuplicateGroup,
    DuplicateScanResult,
    FileRecord,
    JunkCategory,
    JunkFile,
    JunkScanResult,
    MatchKind,
    ProgressEvent,
)
from storage_janitor.core.packages import StaticPackageRegistry, read_package_archive
from storage_janitor.core.progress import CancellationToken, ProgressStream
from storage_janitor.core.quality import BlurQualityAnalyzer, PillowExifReader
from storage_janitor.core.safety import DefaultSafetyPolicy
from storage_janitor.core.selector import BestFileSelector

__all__ = [
    "BestFileSelector",
    "BlurQualityAnalyzer",
    "CancellationToken",
    "DefaultSafetyPolicy",
    "DirectoryClassifier",
    "DuplicateDetectionPipeline",
    "DuplicateGroup",
    "DuplicateScanResult",
    "FileInventory",
    "FileRecord",
    "HashCache",
    "HashService",
    "JunkCategory",
    "JunkFile",
    "JunkScanResult",
    "MatchKind",
    "PillowExifReader",
    "ProgressEvent",
    "ProgressStream",
    "ScanState",
    "StaticPackageRegistry",
    "VideoMetadata",
    "read_package_archive",
]
