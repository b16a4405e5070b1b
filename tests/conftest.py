"""Shared fixtures: synthetic images, package archives and fake collaborators."""

import os
import struct
import zipfile
from pathlib import Path
from typing import Callable, List, Optional

import pytest
from PIL import Image, ImageDraw

from storage_janitor.utils.config import Config

NO_INDEX = 0xFFFFFFFF
ANDROID_NS = "http://schemas.android.com/apk/res/android"


def draw_checkerboard(size=(800, 600), tiles=(4, 4), invert: bool = False) -> Image.Image:
    """Colored checkerboard whose tile edges line up with a 32x32 hash grid."""
    dark, light = (30, 60, 90), (220, 200, 180)
    img = Image.new("RGB", size, dark)
    draw = ImageDraw.Draw(img)
    tile_w, tile_h = size[0] // tiles[0], size[1] // tiles[1]
    for row in range(tiles[1]):
        for col in range(tiles[0]):
            is_light = (row + col) % 2 == 0
            if invert:
                is_light = not is_light
            if is_light:
                draw.rectangle(
                    [col * tile_w, row * tile_h, (col + 1) * tile_w - 1, (row + 1) * tile_h - 1],
                    fill=light,
                )
    return img


@pytest.fixture
def checkerboard_jpeg() -> Callable[..., Path]:
    """Factory writing a checkerboard JPEG; returns its path."""

    def make(path: Path, quality: int = 95, invert: bool = False, size=(800, 600)) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        draw_checkerboard(size=size, invert=invert).save(path, "JPEG", quality=quality)
        return path

    return make


def _encode_string(value: str, utf8: bool) -> bytes:
    if utf8:
        raw = value.encode("utf-8")
        return bytes([len(value), len(raw)]) + raw + b"\x00"
    return struct.pack("<H", len(value)) + value.encode("utf-16-le") + b"\x00\x00"


def build_binary_manifest(
    package: str,
    version_code: int,
    version_name: str = "1.0",
    utf8: bool = False,
    strip_names: bool = False,
) -> bytes:
    """Compile a minimal ``<manifest>`` element into Android binary XML."""
    strings: List[str] = [
        "" if strip_names else "versionCode",
        "" if strip_names else "versionName",
        "package",
        "manifest",
        package,
        version_name,
        ANDROID_NS,
    ]
    index = {s: i for i, s in enumerate(strings) if s}

    # String pool
    encoded = [_encode_string(s, utf8) for s in strings]
    offsets, cursor = [], 0
    for item in encoded:
        offsets.append(cursor)
        cursor += len(item)
    data = b"".join(encoded)
    data += b"\x00" * (-len(data) % 4)
    header_size = 28
    strings_start = header_size + 4 * len(strings)
    pool_size = strings_start + len(data)
    pool = struct.pack(
        "<HHIIIIII",
        0x0001,
        header_size,
        pool_size,
        len(strings),
        0,
        0x100 if utf8 else 0,
        strings_start,
        0,
    )
    pool += b"".join(struct.pack("<I", o) for o in offsets) + data

    # Resource ids for the first two string slots
    resource_map = struct.pack("<HHI", 0x0180, 8, 16) + struct.pack("<II", 0x0101021B, 0x0101021C)

    attributes = [
        struct.pack("<IIIHBBI", index[ANDROID_NS], 0, NO_INDEX, 8, 0, 0x10, version_code),
        struct.pack(
            "<IIIHBBI", index[ANDROID_NS], 1, index[version_name], 8, 0, 0x03, index[version_name]
        ),
        struct.pack("<IIIHBBI", NO_INDEX, index["package"], index[package], 8, 0, 0x03, index[package]),
    ]
    element_size = 16 + 20 + 20 * len(attributes)
    element = struct.pack("<HHIII", 0x0102, 16, element_size, 1, NO_INDEX)
    element += struct.pack("<IIHHHHHH", NO_INDEX, index["manifest"], 20, 20, len(attributes), 0, 0, 0)
    element += b"".join(attributes)

    body = pool + resource_map + element
    return struct.pack("<HHI", 0x0003, 8, 8 + len(body)) + body


@pytest.fixture
def manifest_builder() -> Callable[..., bytes]:
    return build_binary_manifest


@pytest.fixture
def apk_factory() -> Callable[..., Path]:
    """Factory writing a package archive with a compiled manifest."""

    def make(path: Path, package: str, version_code: int, **kwargs) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("AndroidManifest.xml", build_binary_manifest(package, version_code, **kwargs))
            archive.writestr("classes.dex", b"dex\n035\x00")
        return path

    return make


class FakeSafetyPolicy:
    """Policy driven by simple path predicates."""

    def __init__(
        self,
        deletable: Optional[Callable[[str], bool]] = None,
        scannable: Optional[Callable[[str], bool]] = None,
    ):
        self.deletable = deletable or (lambda path: True)
        self.scannable = scannable or (lambda path: True)
        self.delete_checks: List[str] = []

    def is_safe_to_delete(self, path) -> bool:
        self.delete_checks.append(str(path))
        return self.deletable(str(path))

    def is_safe_to_scan(self, directory) -> bool:
        return self.scannable(str(directory))


@pytest.fixture
def permissive_policy() -> FakeSafetyPolicy:
    return FakeSafetyPolicy()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch) -> Config:
    """Config stored under tmp_path; also used by Config() calls in the CLI."""
    config_file = tmp_path / "config" / "config.json"
    monkeypatch.setattr(Config, "DEFAULT_CONFIG_FILE", config_file)
    return Config(config_file)


def write_bytes(path: Path, data: bytes, mtime: Optional[float] = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def file_factory() -> Callable[..., Path]:
    """Factory writing raw bytes to a path (parents created), optionally setting mtime."""
    return write_bytes


@pytest.fixture
def policy_factory() -> Callable[..., FakeSafetyPolicy]:
    return FakeSafetyPolicy
