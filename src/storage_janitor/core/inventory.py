"""File inventory: turns directories into FileRecord lists for the scanners."""

import os
from pathlib import Path
from typing import List, Set

from tqdm import tqdm

from storage_janitor.core.models import FileRecord
from storage_janitor.utils.config import Config
from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)


class FileInventory:
    """Collects file records from directories with progress tracking."""

    def __init__(self, config: Config, show_progress: bool = True):
        """
        Initialize the inventory builder.

        Args:
            config: Configuration instance (protected folders are skipped)
            show_progress: Show progress bar while reading file metadata
        """
        self.config = config
        self.show_progress = show_progress

    def collect(
        self,
        directory: Path,
        recursive: bool = True,
        skip_hidden: bool = False,
        images_only: bool = False,
    ) -> List[FileRecord]:
        """
        Build file records for everything in a directory.

        Args:
            directory: Directory path to scan
            recursive: Recursively scan subdirectories
            skip_hidden: Skip hidden files and folders
            images_only: Keep only records with an image mime type

        Returns:
            List of FileRecord, sorted by path

        Raises:
            FileNotFoundError: If directory doesn't exist
            ValueError: If the path is not a directory
        """
        directory = Path(directory)
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")

        if not directory.is_dir():
            raise ValueError(f"Not a directory: {directory}")

        logger.info(f"Collecting files in: {directory}")

        paths = self._discover_files(directory, recursive, skip_hidden)
        logger.info(f"Found {len(paths)} files")

        if self.show_progress:
            path_iter = tqdm(paths, desc="Reading metadata", unit="file")
        else:
            path_iter = paths

        records: List[FileRecord] = []
        for path in path_iter:
            try:
                record = FileRecord.from_path(path)
            except OSError as e:
                logger.warning(f"Cannot stat {path}: {e}")
                continue
            if images_only and not record.is_image:
                continue
            records.append(record)

        return sorted(records, key=lambda r: r.path)

    def _discover_files(self, directory: Path, recursive: bool, skip_hidden: bool) -> List[Path]:
        files: List[Path] = []

        def on_error(error: OSError) -> None:
            logger.warning(f"Permission denied accessing directory: {error}")

        if recursive:
            for root, dirs, filenames in os.walk(directory, onerror=on_error):
                root_path = Path(root)

                if skip_hidden:
                    dirs[:] = [d for d in dirs if not d.startswith(".")]

                # Skip symlinked directories to avoid loops
                dirs[:] = [d for d in dirs if not (root_path / d).is_symlink()]
                dirs[:] = [d for d in dirs if not self.config.is_path_protected(root_path / d)]

                for filename in filenames:
                    if skip_hidden and filename.startswith("."):
                        continue
                    file_path = root_path / filename
                    if file_path.is_symlink():
                        continue
                    files.append(file_path)
        else:
            try:
                for item in directory.iterdir():
                    if skip_hidden and item.name.startswith("."):
                        continue
                    if item.is_file() and not item.is_symlink():
                        files.append(item)
            except PermissionError as e:
                logger.warning(f"Permission denied accessing directory: {e}")

        return [f for f in files if not self.config.is_path_protected(f)]

    def collect_many(
        self,
        directories: List[Path],
        recursive: bool = True,
        skip_hidden: bool = False,
        images_only: bool = False,
    ) -> List[FileRecord]:
        """
        Collect records from several directories.

        Missing or invalid directories are logged and skipped.

        Returns:
            Combined list of unique records, sorted by path
        """
        seen: Set[str] = set()
        records: List[FileRecord] = []

        for directory in directories:
            try:
                found = self.collect(directory, recursive, skip_hidden, images_only)
            except (FileNotFoundError, ValueError) as e:
                logger.error(f"Error scanning {directory}: {e}")
                continue
            for record in found:
                if record.path not in seen:
                    seen.add(record.path)
                    records.append(record)

        return sorted(records, key=lambda r: r.path)
