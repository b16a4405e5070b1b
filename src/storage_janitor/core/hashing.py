"""
Content and perceptual hashing with a shared, explicit cache.

Content hashes are MD5 digests of the full byte stream and are what exact
duplicate grouping relies on. Perceptual hashes are mean-threshold bit grids
over an area-averaged luminance thumbnail, used for near-duplicate images.
"""

import hashlib
import os
import sys
import threading
from pathlib import Path
from typing import Dict, Optional, Union

import imagehash
import numpy as np
from PIL import Image, UnidentifiedImageError

from storage_janitor.core.errors import DecodeError, FileReadError, ScanPermissionError
from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, Path]

QUICK_HASH_SAMPLE = 8 * 1024


def cache_key(path: PathLike) -> str:
    """Absolute, normalized form of ``path`` used for cache lookups."""
    return os.path.normpath(os.path.abspath(str(path)))


class HashCache:
    """
    Process-lifetime store of computed hashes, keyed by absolute path.

    Entries are never invalidated automatically: callers that know a file
    changed must call :meth:`invalidate`. One instance may be shared by
    several concurrent scans; two threads racing on the same key just compute
    the same value twice.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._content: Dict[str, str] = {}
        self._perceptual: Dict[str, imagehash.ImageHash] = {}

    def get_content(self, path: PathLike) -> Optional[str]:
        with self._lock:
            return self._content.get(cache_key(path))

    def put_content(self, path: PathLike, digest: str) -> None:
        with self._lock:
            self._content[cache_key(path)] = digest

    def get_perceptual(self, path: PathLike) -> Optional[imagehash.ImageHash]:
        with self._lock:
            return self._perceptual.get(cache_key(path))

    def put_perceptual(self, path: PathLike, value: imagehash.ImageHash) -> None:
        with self._lock:
            self._perceptual[cache_key(path)] = value

    def invalidate(self, path: PathLike) -> None:
        """Forget every hash computed for ``path``."""
        key = cache_key(path)
        with self._lock:
            self._content.pop(key, None)
            self._perceptual.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._content.clear()
            self._perceptual.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._content) + len(self._perceptual)


class HashService:
    """Computes and memoizes content and perceptual hashes."""

    def __init__(
        self,
        cache: Optional[HashCache] = None,
        chunk_size: int = 8192,
        grid_size: int = 32,
    ):
        """
        Initialize the hash service.

        Args:
            cache: Shared cache (a private one is created if None)
            chunk_size: Read size when streaming file content
            grid_size: Side of the luminance grid; the hash has grid_size**2 bits
        """
        self.cache = cache if cache is not None else HashCache()
        self.chunk_size = chunk_size
        self.grid_size = grid_size

    def content_hash(self, path: PathLike) -> str:
        """
        MD5 of the full file content as a lowercase hex string.

        Args:
            path: File to hash

        Returns:
            32-character hex digest

        Raises:
            FileReadError: If the file cannot be opened or read
            ScanPermissionError: If access to the file is denied
        """
        cached = self.cache.get_content(path)
        if cached is not None:
            return cached

        md5 = hashlib.md5()
        try:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(self.chunk_size), b""):
                    md5.update(chunk)
        except PermissionError as e:
            raise ScanPermissionError(f"Permission denied reading {path}: {e}") from e
        except OSError as e:
            raise FileReadError(f"Cannot read {path}: {e}") from e

        digest = md5.hexdigest()
        self.cache.put_content(path, digest)
        return digest

    def quick_hash(self, path: PathLike) -> str:
        """
        Bounded-I/O fingerprint for very large files.

        Hashes the first 8 KiB, the last 8 KiB (files over 16 KiB only) and
        the decimal file size. Two different files that share head, tail and
        length collide, so this is a pre-filter and never proof of equality.
        The result is not cached and not used for grouping.

        Raises:
            FileReadError: If the file cannot be opened or read
        """
        md5 = hashlib.md5()
        try:
            size = os.path.getsize(path)
            with open(path, "rb") as f:
                md5.update(f.read(QUICK_HASH_SAMPLE))
                if size > 2 * QUICK_HASH_SAMPLE:
                    f.seek(-QUICK_HASH_SAMPLE, os.SEEK_END)
                    md5.update(f.read(QUICK_HASH_SAMPLE))
        except PermissionError as e:
            raise ScanPermissionError(f"Permission denied reading {path}: {e}") from e
        except OSError as e:
            raise FileReadError(f"Cannot read {path}: {e}") from e

        md5.update(str(size).encode("ascii"))
        return md5.hexdigest()

    def perceptual_hash(self, path: PathLike) -> imagehash.ImageHash:
        """
        Mean-threshold hash of an image.

        The image is area-averaged down to a grid_size x grid_size RGB
        thumbnail, converted to luminance (0.299R + 0.587G + 0.114B) and
        each cell becomes one bit: 1 if brighter than the grid mean.

        Args:
            path: Image file

        Returns:
            ImageHash of grid_size**2 bits

        Raises:
            DecodeError: If the file is not a readable raster image
            FileReadError: If the file cannot be opened
        """
        cached = self.cache.get_perceptual(path)
        if cached is not None:
            return cached

        grid = self._luminance_grid(path)
        value = imagehash.ImageHash(grid > grid.mean())
        self.cache.put_perceptual(path, value)
        return value

    def _luminance_grid(self, path: PathLike) -> np.ndarray:
        size = (self.grid_size, self.grid_size)
        try:
            with Image.open(path) as img:
                with img.convert("RGB") as rgb, rgb.resize(size, Image.Resampling.BOX) as small:
                    with small.convert("L") as gray:
                        return np.asarray(gray, dtype=np.float64)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise FileReadError(f"Cannot open {path}: {e}") from e
        except PermissionError as e:
            raise ScanPermissionError(f"Permission denied reading {path}: {e}") from e
        except UnidentifiedImageError as e:
            raise DecodeError(f"Not a raster image: {path}") from e
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Cannot decode {path}: {e}") from e

    @staticmethod
    def hamming_distance(first: imagehash.ImageHash, second: imagehash.ImageHash) -> int:
        """Number of differing bits; hashes of different lengths are maximally far apart."""
        if first.hash.size != second.hash.size:
            return sys.maxsize
        return int(first - second)

    def invalidate(self, path: PathLike) -> None:
        self.cache.invalidate(path)
