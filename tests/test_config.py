"""Test configuration loading and persistence."""

import json

from storage_janitor.utils.config import Config


def test_defaults_written_on_first_load(tmp_path):
    """Test that a missing config file is created with defaults."""
    config_file = tmp_path / "cfg" / "config.json"

    config = Config(config_file)

    assert config_file.exists()
    assert config.get("duplicates.similarity_threshold") == 5
    assert config.get("junk.large_file_threshold_mb") == 100
    assert config.get("packages.installed") == {}


def test_dot_notation_get_and_default(isolated_config):
    """Test nested lookups and fallbacks."""
    assert isolated_config.get("quality.blur_threshold") == 100.0
    assert isolated_config.get("quality.missing", "fallback") == "fallback"
    assert isolated_config.get("protected_folders.nested", 1) == 1


def test_set_persists(isolated_config):
    """Test that set() writes through to disk."""
    isolated_config.set("duplicates.similarity_threshold", 8)
    isolated_config.set("packages.installed", {"com.example": 3})

    reloaded = Config(isolated_config.config_file)

    assert reloaded.get("duplicates.similarity_threshold") == 8
    assert reloaded.get("packages.installed") == {"com.example": 3}


def test_old_file_merged_with_defaults(tmp_path):
    """Test that keys missing from an older file are filled in."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"duplicates": {"similarity_threshold": 2}}))

    config = Config(config_file)

    assert config.get("duplicates.similarity_threshold") == 2
    assert config.get("duplicates.hash_grid_size") == 32
    assert config.get("junk.progress_interval_seconds") == 1.0


def test_invalid_file_falls_back_to_defaults(tmp_path):
    """Test that a corrupt file does not prevent loading."""
    config_file = tmp_path / "config.json"
    config_file.write_text("{not json")

    config = Config(config_file)

    assert config.get("quality.low_quality_threshold") == 0.6


def test_defaults_are_not_shared(tmp_path):
    """Test that mutating one config leaves the class defaults untouched."""
    config = Config(tmp_path / "config.json")
    config.get("protected_folders").append("x")

    assert Config.DEFAULT_SETTINGS["protected_folders"] == []


def test_protected_folders(isolated_config, tmp_path):
    """Test adding, matching and removing protected folders."""
    isolated_config.add_protected_folder("Family")
    isolated_config.add_protected_folder("Family")

    assert isolated_config.get("protected_folders") == ["Family"]
    assert isolated_config.is_path_protected(tmp_path / "family" / "a.jpg")
    assert not isolated_config.is_path_protected(tmp_path / "work" / "a.jpg")

    isolated_config.remove_protected_folder("Family")

    assert not isolated_config.is_path_protected(tmp_path / "family" / "a.jpg")
