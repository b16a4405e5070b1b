"""Utility functions for configuration, logging, and helpers."""

from storage_janitor.utils.config import Config
from storage_janitor.utils.formatting import format_file_size, save_json, to_jsonable
from storage_janitor.utils.logger import setup_logger

__all__ = ["Config", "format_file_size", "save_json", "setup_logger", "to_jsonable"]
