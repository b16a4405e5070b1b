"""
Installed-package registry and Android package archive inspection.

Package archives (.apk and friends) are zip files whose
``AndroidManifest.xml`` is stored in Android's compiled binary XML format.
Only the handful of fields needed to decide whether an archive is
superseded by an installed package are decoded.
"""

import struct
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Set, Union

from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, Path]

MANIFEST_ENTRY = "AndroidManifest.xml"

# Chunk types
RES_XML_TYPE = 0x0003
RES_STRING_POOL_TYPE = 0x0001
RES_XML_RESOURCE_MAP_TYPE = 0x0180
RES_XML_START_ELEMENT_TYPE = 0x0102

UTF8_FLAG = 1 << 8
NO_INDEX = 0xFFFFFFFF

# Typed value kinds
TYPE_STRING = 0x03

# android:versionCode / android:versionName resource ids, used when the
# attribute names were stripped from the string pool
ATTR_VERSION_CODE = 0x0101021B
ATTR_VERSION_NAME = 0x0101021C


@dataclass(frozen=True)
class PackageArchiveInfo:
    package_name: str
    version_code: int
    version_name: Optional[str] = None


class PackageRegistry(Protocol):
    def is_package_installed(self, package_name: str) -> bool:
        ...

    def get_installed_package_names(self) -> Set[str]:
        ...

    def installed_version_code(self, package_name: str) -> Optional[int]:
        ...

    def read_archive(self, path: PathLike) -> Optional[PackageArchiveInfo]:
        ...


class ManifestFormatError(ValueError):
    """Raised when a binary manifest is truncated or malformed."""
    pass


class _Reader:
    def __init__(self, data: bytes):
        self.data = data

    def u8(self, offset: int) -> int:
        return self._unpack("<B", offset)

    def u16(self, offset: int) -> int:
        return self._unpack("<H", offset)

    def u32(self, offset: int) -> int:
        return self._unpack("<I", offset)

    def _unpack(self, fmt: str, offset: int) -> int:
        try:
            return struct.unpack_from(fmt, self.data, offset)[0]
        except struct.error as e:
            raise ManifestFormatError(f"Truncated manifest at offset {offset}") from e


def _decode_string_pool(reader: _Reader, start: int) -> List[str]:
    header_size = reader.u16(start + 2)
    count = reader.u32(start + 8)
    flags = reader.u32(start + 16)
    strings_start = start + reader.u32(start + 20)
    is_utf8 = bool(flags & UTF8_FLAG)

    strings = []
    for i in range(count):
        offset = strings_start + reader.u32(start + header_size + i * 4)
        if is_utf8:
            strings.append(_read_utf8(reader, offset))
        else:
            strings.append(_read_utf16(reader, offset))
    return strings


def _read_utf8(reader: _Reader, offset: int) -> str:
    # Character count first, then byte count; each is 1 or 2 bytes long
    if reader.u8(offset) & 0x80:
        offset += 2
    else:
        offset += 1
    length = reader.u8(offset)
    if length & 0x80:
        length = ((length & 0x7F) << 8) | reader.u8(offset + 1)
        offset += 2
    else:
        offset += 1
    raw = reader.data[offset:offset + length]
    if len(raw) != length:
        raise ManifestFormatError("String runs past end of manifest")
    return raw.decode("utf-8", errors="replace")


def _read_utf16(reader: _Reader, offset: int) -> str:
    length = reader.u16(offset)
    if length & 0x8000:
        length = ((length & 0x7FFF) << 16) | reader.u16(offset + 2)
        offset += 4
    else:
        offset += 2
    raw = reader.data[offset:offset + length * 2]
    if len(raw) != length * 2:
        raise ManifestFormatError("String runs past end of manifest")
    return raw.decode("utf-16-le", errors="replace")


def parse_binary_manifest(data: bytes) -> Dict[str, object]:
    """
    Decode the attributes of the root ``<manifest>`` element.

    Args:
        data: Compiled AndroidManifest.xml bytes

    Returns:
        Dict with any of ``package``, ``versionCode`` and ``versionName``

    Raises:
        ManifestFormatError: If the data is not a well-formed binary XML document
    """
    reader = _Reader(data)
    if reader.u16(0) != RES_XML_TYPE:
        raise ManifestFormatError("Not a binary XML document")

    strings: List[str] = []
    resource_ids: List[int] = []
    offset = reader.u16(2)
    end = min(reader.u32(4), len(data))

    while offset + 8 <= end:
        chunk_type = reader.u16(offset)
        header_size = reader.u16(offset + 2)
        chunk_size = reader.u32(offset + 4)
        if chunk_size < 8:
            raise ManifestFormatError(f"Invalid chunk size {chunk_size}")

        if chunk_type == RES_STRING_POOL_TYPE:
            strings = _decode_string_pool(reader, offset)
        elif chunk_type == RES_XML_RESOURCE_MAP_TYPE:
            count = (chunk_size - header_size) // 4
            resource_ids = [reader.u32(offset + header_size + i * 4) for i in range(count)]
        elif chunk_type == RES_XML_START_ELEMENT_TYPE:
            name_index = reader.u32(offset + header_size + 4)
            if _string(strings, name_index) == "manifest":
                return _manifest_attributes(reader, offset, header_size, strings, resource_ids)

        offset += chunk_size

    raise ManifestFormatError("No <manifest> element found")


def _string(strings: List[str], index: int) -> Optional[str]:
    if index == NO_INDEX or index >= len(strings):
        return None
    return strings[index]


def _manifest_attributes(
    reader: _Reader,
    offset: int,
    header_size: int,
    strings: List[str],
    resource_ids: List[int],
) -> Dict[str, object]:
    ext = offset + header_size
    attr_start = reader.u16(ext + 8)
    attr_size = reader.u16(ext + 10) or 20
    attr_count = reader.u16(ext + 12)

    attributes: Dict[str, object] = {}
    for i in range(attr_count):
        attr = ext + attr_start + i * attr_size
        name_index = reader.u32(attr + 4)
        raw_value = reader.u32(attr + 8)
        data_type = reader.u8(attr + 15)
        data = reader.u32(attr + 16)

        name = _string(strings, name_index) or ""
        resource_id = resource_ids[name_index] if name_index < len(resource_ids) else None
        if not name and resource_id == ATTR_VERSION_CODE:
            name = "versionCode"
        elif not name and resource_id == ATTR_VERSION_NAME:
            name = "versionName"

        if raw_value != NO_INDEX:
            value: object = _string(strings, raw_value)
        elif data_type == TYPE_STRING:
            value = _string(strings, data)
        else:
            value = data

        if name in ("package", "versionCode", "versionName"):
            attributes[name] = value
    return attributes


def read_package_archive(path: PathLike) -> Optional[PackageArchiveInfo]:
    """
    Read the declared package of an Android package archive.

    Args:
        path: .apk file

    Returns:
        PackageArchiveInfo, or None if the archive or its manifest cannot be read
    """
    try:
        with zipfile.ZipFile(path) as archive:
            data = archive.read(MANIFEST_ENTRY)
        attributes = parse_binary_manifest(data)
    except (OSError, zipfile.BadZipFile, KeyError, ManifestFormatError) as e:
        logger.debug(f"Unreadable package archive {path}: {e}")
        return None

    package_name = attributes.get("package")
    if not package_name:
        logger.debug(f"Package archive without a package name: {path}")
        return None

    version_code = attributes.get("versionCode", 0)
    try:
        version_code = int(version_code)
    except (TypeError, ValueError):
        version_code = 0

    version_name = attributes.get("versionName")
    return PackageArchiveInfo(
        package_name=str(package_name),
        version_code=version_code,
        version_name=str(version_name) if version_name is not None else None,
    )


class StaticPackageRegistry:
    """Registry backed by a fixed ``{package_name: version_code}`` mapping."""

    def __init__(self, installed: Optional[Mapping[str, int]] = None):
        self._installed: Dict[str, int] = {
            name: int(code) for name, code in (installed or {}).items()
        }

    def is_package_installed(self, package_name: str) -> bool:
        return package_name in self._installed

    def get_installed_package_names(self) -> Set[str]:
        return set(self._installed)

    def installed_version_code(self, package_name: str) -> Optional[int]:
        return self._installed.get(package_name)

    def read_archive(self, path: PathLike) -> Optional[PackageArchiveInfo]:
        return read_package_archive(path)
