"""Formatting and serialization helpers for reports."""

import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any

SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_file_size(size_bytes: int) -> str:
    """
    Format a byte count as a human readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        String such as "1.5 MB"
    """
    if size_bytes <= 0:
        return "0 B"

    size = float(size_bytes)
    unit = 0
    while size >= 1024 and unit < len(SIZE_UNITS) - 1:
        size /= 1024
        unit += 1

    if unit == 0:
        return f"{int(size)} B"
    return f"{size:.1f} {SIZE_UNITS[unit]}"


def to_jsonable(value: Any) -> Any:
    """Convert result dataclasses, enums and paths into JSON-friendly values."""
    if is_dataclass(value) and not isinstance(value, type):
        return {k: to_jsonable(v) for k, v in asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


def save_json(data: Any, output_path: Path) -> None:
    """Save a report to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(to_jsonable(data), f, indent=2)
