"""
Engine configuration — ``<WMR_HOME>/config/config.yaml``.

Example:
    template_dirs:
      - ~/dotfiles/wmr-templates
    validation_level: strict
    registry_file: ~/.wmr/registry.json
    machine_name: LAPTOP
    shell: ["pwsh", "-NoProfile", "-Command"]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from . import WMR_HOME
from .templates.schema import ValidationLevel

logger = logging.getLogger("wmr.config")


class EngineConfig(BaseModel):
    """Persistent configuration for the engine and CLI."""

    template_dirs: list[Path] = Field(default_factory=list)
    validation_level: ValidationLevel = ValidationLevel.MODERATE
    registry_file: Optional[Path] = None
    file_root: Optional[Path] = None
    no_prompt: bool = True
    machine_name: Optional[str] = None
    hostname: Optional[str] = None
    # Argv prefix for prerequisite probes; None = platform default.
    shell: Optional[list[str]] = None
    prerequisite_timeout: float = 30

    @field_validator("shell", mode="before")
    @classmethod
    def shell_as_argv(cls, v: Union[str, list, None]):
        """A plain string is split on whitespace."""
        return v.split() if isinstance(v, str) else v


def config_path(home: Optional[Path] = None) -> Path:
    return Path(home or WMR_HOME).expanduser() / "config" / "config.yaml"


def load_config(home: Optional[Path] = None) -> EngineConfig:
    """Load engine configuration from disk.

    Args:
        home: WMR home directory. Defaults to ``WMR_HOME``.

    Returns:
        EngineConfig loaded from config.yaml, or defaults.
    """
    config_file = config_path(home)
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text()) or {}
            return EngineConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config: %s — using defaults", exc)
    return EngineConfig()


def save_config(config: EngineConfig, home: Optional[Path] = None) -> Path:
    """Write ``config`` to ``<home>/config/config.yaml``."""
    config_file = config_path(home)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_defaults=True)
    config_file.write_text(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    return config_file
