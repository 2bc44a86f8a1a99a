"""Tests for engine configuration loading."""

from __future__ import annotations

import logging
from pathlib import Path

from wmr.config import EngineConfig, config_path, load_config, save_config
from wmr.templates.schema import ValidationLevel


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)
        assert config == EngineConfig()
        assert config.validation_level is ValidationLevel.MODERATE
        assert config.no_prompt is True

    def test_reads_yaml(self, wmr_home: Path) -> None:
        config = load_config(wmr_home)
        assert config.machine_name == "LAPTOP"
        assert config.registry_file == wmr_home / "registry.json"

    def test_broken_file_falls_back(self, tmp_path: Path, caplog) -> None:
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("validation_level: [unclosed\n")
        with caplog.at_level(logging.WARNING, logger="wmr.config"):
            config = load_config(tmp_path)
        assert config == EngineConfig()
        assert "using defaults" in caplog.text

    def test_invalid_value_falls_back(self, tmp_path: Path) -> None:
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("validation_level: paranoid\n")
        assert load_config(tmp_path).validation_level is ValidationLevel.MODERATE


class TestEngineConfig:
    """Tests for EngineConfig fields."""

    def test_shell_string_is_split(self) -> None:
        assert EngineConfig(shell="pwsh -NoProfile -Command").shell == ["pwsh", "-NoProfile", "-Command"]

    def test_level_is_lenient(self) -> None:
        assert EngineConfig(validation_level="STRICT").validation_level is ValidationLevel.STRICT


def test_save_then_load(tmp_path: Path) -> None:
    config = EngineConfig(template_dirs=[tmp_path / "extra"], validation_level="strict", no_prompt=False)
    written = save_config(config, tmp_path)
    assert written == tmp_path / "config" / "config.yaml"
    assert "machine_name" not in written.read_text()
    assert load_config(tmp_path) == config
