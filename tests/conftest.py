"""Shared test fixtures for wmr."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest
import yaml

from wmr.context import HardwareInfo, MachineContext, SoftwareInfo
from wmr.privilege import PrivilegeModel
from wmr.state import FileStore, RegistryStore, StateStoreRouter
from wmr.templates import parse_template


@pytest.fixture
def make_context() -> Callable[..., MachineContext]:
    """Factory for deterministic machine contexts."""

    def _make(
        hostname: str = "DESKTOP",
        machine_name: str = "",
        username: str = "tester",
        is_elevated: bool = False,
        environment: dict | None = None,
        **hardware: str,
    ) -> MachineContext:
        return MachineContext(
            machine_name=machine_name or hostname,
            hostname=hostname,
            username=username,
            is_elevated=is_elevated,
            environment=environment or {"USERPROFILE": "C:\\Users\\tester"},
            hardware=HardwareInfo(**hardware),
            software=SoftwareInfo(os_family="Windows", os_version="10.0.22631", architecture="AMD64"),
        )

    return _make


@pytest.fixture
def elevated() -> PrivilegeModel:
    """A privilege model that reports an elevated session."""
    return PrivilegeModel(probe=lambda: True)


@pytest.fixture
def unprivileged() -> PrivilegeModel:
    """A privilege model that reports an unprivileged session, no prompt."""
    return PrivilegeModel(probe=lambda: False)


@pytest.fixture
def template_from() -> Callable[[str], object]:
    """Parse a dedented YAML template document."""

    def _parse(text: str):
        return parse_template(textwrap.dedent(text))

    return _parse


@pytest.fixture
def write_template(tmp_path: Path) -> Callable[..., Path]:
    """Write a template document into a directory and return its path."""

    def _write(name: str, text: str, directory: Path | None = None) -> Path:
        target_dir = directory or tmp_path / "templates"
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        path.write_text(textwrap.dedent(text))
        return path

    return _write


@pytest.fixture
def store(tmp_path: Path, unprivileged: PrivilegeModel) -> StateStoreRouter:
    """An emulated registry plus a file store rooted in tmp_path."""
    root = tmp_path / "machine"
    root.mkdir()
    return StateStoreRouter(
        RegistryStore(privileges=unprivileged),
        FileStore(root=root, environment={"USERPROFILE": str(root / "home")}),
    )


@pytest.fixture
def wmr_home(tmp_path: Path) -> Path:
    """A WMR home with a config persisting the registry inside tmp_path."""
    home = tmp_path / ".wmr"
    (home / "config").mkdir(parents=True)
    (home / "templates").mkdir()
    config = {
        "registry_file": str(home / "registry.json"),
        "file_root": str(tmp_path / "machine"),
        "machine_name": "LAPTOP",
        "hostname": "LAPTOP",
        "no_prompt": True,
    }
    (home / "config" / "config.yaml").write_text(yaml.dump(config, default_flow_style=False))
    (tmp_path / "machine").mkdir()
    return home


THEME_TEMPLATE = """\
metadata:
  name: App Theme
  version: 1.0
registry:
  - name: Theme
    path: 'HKCU:\\Software\\App'
    type: value
    key_name: Theme
    value: Light
    backup_name: app-theme
machine_specific:
  - name: laptop
    selectors:
      hostname: {operator: equals, value: LAPTOP}
    registry:
      - path: 'HKCU:\\Software\\App'
        type: value
        key_name: Theme
        value: Dark
        backup_name: app-theme
"""


@pytest.fixture
def theme_template_text() -> str:
    """The LAPTOP/DESKTOP theme scenario as template text."""
    return THEME_TEMPLATE
