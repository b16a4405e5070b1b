"""
Storage Janitor - duplicate detection and junk classification for local storage.

Finds exact and visually similar duplicate files and sorts disposable files
(caches, temp files, leftovers of uninstalled apps, superseded package
archives, oversized files, empty folders) into cleanup categories. Nothing
is ever deleted by this package.
"""

__version__ = "0.1.0"
__author__ = "Storage Janitor Contributors"

from storage_janitor.core.classifier import DirectoryClassifier
from storage_janitor.core.detector import DuplicateDetectionPipeline
from storage_janitor.core.hashing import HashCache, HashService
from storage_janitor.core.progress import CancellationToken, ProgressStream
from storage_janitor.core.quality import BlurQualityAnalyzer
from storage_janitor.core.selector import BestFileSelector

__all__ = [
    "BestFileSelector",
    "BlurQualityAnalyzer",
    "CancellationToken",
    "DirectoryClassifier",
    "DuplicateDetectionPipeline",
    "HashCache",
    "HashService",
    "ProgressStream",
    "__version__",
]
