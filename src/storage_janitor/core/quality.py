"""
Photo sharpness and quality scoring.

Blur is measured as the variance of the absolute Laplacian response over a
grayscale copy. Quality is the mean of several normalized factors
(resolution, brightness, contrast, histogram entropy and, when available,
EXIF hints about the capturing camera).
"""

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Protocol, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from storage_janitor.core.errors import DecodeError, FileFailure, FileReadError, ScanPermissionError
from storage_janitor.core.models import FileRecord, ProgressEvent
from storage_janitor.core.progress import CancellationToken, scaled_percent
from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, Path]

SAMPLE_STRIDE = 4
MIN_RESOLUTION = (320, 240)

RESOLUTION_TIERS = [
    (1920 * 1080, 1.0),
    (1280 * 720, 0.8),
    (640 * 480, 0.6),
]
LOWEST_RESOLUTION_TIER = 0.4

PROFESSIONAL_BRANDS = ["canon", "nikon", "sony", "fujifilm", "leica"]
PROFESSIONAL_MODEL_KEYWORDS = ["eos", "d850", "d750", "a7", "x-t", "gfx"]
GOOD_BRANDS = ["canon", "nikon", "sony", "samsung", "google", "apple"]

# EXIF tag ids
TAG_MAKE = 0x010F
TAG_MODEL = 0x0110
TAG_EXIF_IFD = 0x8769
TAG_ISO = 0x8827
TAG_FLASH = 0x9209


@dataclass(frozen=True)
class ExifInfo:
    make: Optional[str] = None
    model: Optional[str] = None
    iso: int = 0
    flash_fired: bool = False


class ExifReader(Protocol):
    def read(self, path: PathLike) -> Optional[ExifInfo]:
        ...


class PillowExifReader:
    """Reads camera make/model, ISO and flash from an image's EXIF block."""

    def read(self, path: PathLike) -> Optional[ExifInfo]:
        """
        Read EXIF hints from an image file.

        Args:
            path: Image file

        Returns:
            ExifInfo, or None if the file has no EXIF data or cannot be read
        """
        try:
            with Image.open(path) as img:
                exif = img.getexif()
                if not exif:
                    return None
                sub_ifd = exif.get_ifd(TAG_EXIF_IFD)
                make = exif.get(TAG_MAKE)
                model = exif.get(TAG_MODEL)
                iso = sub_ifd.get(TAG_ISO, exif.get(TAG_ISO, 0))
                flash = sub_ifd.get(TAG_FLASH, exif.get(TAG_FLASH, 0))
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            logger.debug(f"No EXIF for {path}: {e}")
            return None

        if isinstance(iso, (tuple, list)):
            iso = iso[0] if iso else 0
        return ExifInfo(
            make=str(make).strip("\x00 ") if make else None,
            model=str(model).strip("\x00 ") if model else None,
            iso=_as_int(iso),
            flash_fired=bool(_as_int(flash) & 0x1),
        )


def _as_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class PhotoQualityReport:
    path: str
    width: int
    height: int
    blur_score: float
    quality_score: float
    brightness: float
    contrast: float
    is_blurry: bool
    is_low_quality: bool
    issues: List[str] = field(default_factory=list)


@dataclass
class PhotoAnalysisResult:
    """Terminal payload of :meth:`BlurQualityAnalyzer.analyze_photos`."""

    blurry: List[PhotoQualityReport] = field(default_factory=list)
    low_quality: List[PhotoQualityReport] = field(default_factory=list)
    analyzed_count: int = 0
    failures: List[FileFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def error_count(self) -> int:
        return len(self.failures)


def exif_factor(exif: ExifInfo) -> float:
    """Score in [0, 1] derived from capture metadata."""
    score = 0.5

    if exif.make and exif.model:
        make = exif.make.lower()
        model = exif.model.lower()
        if any(b in make for b in PROFESSIONAL_BRANDS) and any(
            k in model for k in PROFESSIONAL_MODEL_KEYWORDS
        ):
            score += 0.3
        elif any(b in make for b in GOOD_BRANDS):
            score += 0.2
        else:
            score += 0.1

    if 100 <= exif.iso <= 400:
        score += 0.2
    elif 400 < exif.iso <= 800:
        score += 0.1
    elif exif.iso > 1600:
        score -= 0.1

    if exif.flash_fired:
        score += 0.1

    return min(max(score, 0.0), 1.0)


def _grayscale(image: Image.Image) -> np.ndarray:
    with image.convert("L") as gray:
        return np.asarray(gray, dtype=np.float64)


class BlurQualityAnalyzer:
    """Scores images for sharpness and overall quality."""

    def __init__(
        self,
        blur_threshold: float = 100.0,
        low_quality_threshold: float = 0.6,
        exif_reader: Optional[ExifReader] = None,
    ):
        """
        Initialize the analyzer.

        Args:
            blur_threshold: Laplacian variance below which an image is blurry
            low_quality_threshold: Quality score below which an image is low quality
            exif_reader: Optional EXIF source; without one no EXIF factor is used
        """
        self.blur_threshold = blur_threshold
        self.low_quality_threshold = low_quality_threshold
        self.exif_reader = exif_reader

    def blur_score(self, image: Image.Image) -> float:
        """
        Variance of the absolute Laplacian over interior pixels.

        Args:
            image: Decoded image (any mode)

        Returns:
            Non-negative score; lower means blurrier. 0.0 for images under 3x3.
        """
        pixels = _grayscale(image)
        if pixels.shape[0] < 3 or pixels.shape[1] < 3:
            return 0.0

        laplacian = (
            4 * pixels[1:-1, 1:-1]
            - pixels[:-2, 1:-1]
            - pixels[2:, 1:-1]
            - pixels[1:-1, :-2]
            - pixels[1:-1, 2:]
        )
        x = np.abs(laplacian)
        variance = float(np.mean(x * x) - np.mean(x) ** 2)
        return max(variance, 0.0)

    def _sample(self, image: Image.Image) -> np.ndarray:
        return _grayscale(image)[::SAMPLE_STRIDE, ::SAMPLE_STRIDE]

    @staticmethod
    def resolution_factor(width: int, height: int) -> float:
        pixels = width * height
        for minimum, score in RESOLUTION_TIERS:
            if pixels >= minimum:
                return score
        return LOWEST_RESOLUTION_TIER

    @staticmethod
    def brightness_factor(sample: np.ndarray) -> float:
        if sample.size == 0:
            return 0.0
        return max(0.0, 1.0 - abs(float(sample.mean()) - 128.0) / 128.0)

    @staticmethod
    def contrast_factor(sample: np.ndarray) -> float:
        if sample.size == 0:
            return 0.0
        return float(sample.max() - sample.min()) / 255.0

    @staticmethod
    def entropy_factor(sample: np.ndarray) -> float:
        """Shannon entropy of the luminance histogram, normalized by ln(256)."""
        if sample.size == 0:
            return 0.0
        histogram = np.bincount(sample.astype(np.uint8).ravel(), minlength=256)
        p = histogram[histogram > 0] / sample.size
        entropy = float(-np.sum(p * np.log(p)))
        return entropy / math.log(256)

    def quality_score(self, image: Image.Image, exif: Optional[ExifInfo] = None) -> float:
        """
        Composite quality in [0, 1].

        Brightness, contrast and entropy are computed on every 4th row and
        column, which is an approximation of the full-image values.

        Args:
            image: Decoded image
            exif: Capture metadata; adds one more factor when given

        Returns:
            Mean of the normalized factors, clamped to [0, 1]
        """
        sample = self._sample(image)
        factors = [
            self.resolution_factor(*image.size),
            self.brightness_factor(sample),
            self.contrast_factor(sample),
            self.entropy_factor(sample),
        ]
        if exif is not None:
            factors.append(exif_factor(exif))
        return min(max(sum(factors) / len(factors), 0.0), 1.0)

    def _read_exif(self, path: PathLike) -> Optional[ExifInfo]:
        if self.exif_reader is None:
            return None
        return self.exif_reader.read(path)

    def _open(self, path: PathLike) -> Image.Image:
        try:
            return Image.open(path)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise FileReadError(f"Cannot open {path}: {e}") from e
        except PermissionError as e:
            raise ScanPermissionError(f"Permission denied reading {path}: {e}") from e
        except UnidentifiedImageError as e:
            raise DecodeError(f"Not a raster image: {path}") from e
        except Image.DecompressionBombError as e:
            raise DecodeError(f"Image too large to decode safely: {path}: {e}") from e

    def blur_score_for_path(self, path: PathLike) -> float:
        """
        Raises:
            DecodeError: If the file cannot be decoded as an image
        """
        with self._open(path) as img:
            try:
                return self.blur_score(img)
            except (OSError, ValueError, SyntaxError) as e:
                raise DecodeError(f"Cannot decode {path}: {e}") from e

    def quality_score_for_path(self, path: PathLike) -> float:
        """
        Raises:
            DecodeError: If the file cannot be decoded as an image
        """
        exif = self._read_exif(path)
        with self._open(path) as img:
            try:
                return self.quality_score(img, exif)
            except (OSError, ValueError, SyntaxError) as e:
                raise DecodeError(f"Cannot decode {path}: {e}") from e

    def analyze(self, path: PathLike) -> PhotoQualityReport:
        """
        Full quality report for one image.

        Args:
            path: Image file

        Returns:
            PhotoQualityReport with scores, flags and issues

        Raises:
            DecodeError: If the file cannot be decoded as an image
            FileReadError: If the file cannot be opened
        """
        exif = self._read_exif(path)
        with self._open(path) as img:
            try:
                blur = self.blur_score(img)
                quality = self.quality_score(img, exif)
                sample = self._sample(img)
                width, height = img.size
            except (OSError, ValueError, SyntaxError) as e:
                raise DecodeError(f"Cannot decode {path}: {e}") from e

        report = PhotoQualityReport(
            path=str(path),
            width=width,
            height=height,
            blur_score=blur,
            quality_score=quality,
            brightness=self.brightness_factor(sample),
            contrast=self.contrast_factor(sample),
            is_blurry=blur < self.blur_threshold,
            is_low_quality=quality < self.low_quality_threshold,
        )
        report.issues = self.identify_issues(report)
        return report

    @staticmethod
    def identify_issues(report: PhotoQualityReport) -> List[str]:
        issues = []
        if report.is_blurry:
            issues.append("Image is blurry")
        if report.is_low_quality:
            issues.append("Low overall quality")
        if report.width * report.height < MIN_RESOLUTION[0] * MIN_RESOLUTION[1]:
            issues.append("Low resolution")
        return issues

    def analyze_photos(
        self,
        records: Iterable[FileRecord],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[ProgressEvent]:
        """
        Analyze a batch of images, yielding progress events.

        Files that fail to open or decode are recorded and skipped. The last
        event is terminal and carries a :class:`PhotoAnalysisResult`.

        Args:
            records: Image records to analyze
            cancel_token: Optional cancellation token

        Yields:
            ProgressEvent for each analyzed image, then a terminal event
        """
        token = cancel_token or CancellationToken()
        result = PhotoAnalysisResult()

        yield ProgressEvent(0.0, "Initializing photo analysis...")
        try:
            photos = list(records)
        except Exception as e:
            logger.error(f"Could not obtain photo list: {e}")
            yield ProgressEvent(0.0, f"Analysis failed: {e}", is_terminal=True, error=str(e),
                                partial_result=result)
            return

        total = len(photos)
        percent = 0.0
        for index, record in enumerate(photos, start=1):
            if token.is_cancelled:
                result.cancelled = True
                break
            try:
                report = self.analyze(record.path)
            except (DecodeError, OSError) as e:
                logger.debug(f"Skipping {record.path}: {e}")
                result.failures.append(FileFailure.from_exception(record.path, e))
            else:
                if report.is_blurry:
                    result.blurry.append(report)
                if report.is_low_quality:
                    result.low_quality.append(report)
            result.analyzed_count = index
            percent = scaled_percent(0, 100, index, total)
            yield ProgressEvent(
                percent_complete=percent,
                message=f"Analyzing: {record.name}",
                processed_count=index,
                total_count=total,
                error_count=result.error_count,
            )

        if result.cancelled:
            message = "Analysis cancelled"
        else:
            percent = 100.0
            message = "Analysis completed"
        yield ProgressEvent(
            percent_complete=percent,
            message=message,
            processed_count=result.analyzed_count,
            total_count=total,
            partial_result=result,
            is_terminal=True,
            error_count=result.error_count,
        )
