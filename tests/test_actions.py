"""Tests for backup and restore of resolved configurations."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from wmr.actions import (
    MANIFEST_NAME,
    EntryStatus,
    artifact_name,
    backup_configuration,
    read_manifest,
    restore_configuration,
)
from wmr.engine import resolve
from wmr.errors import NotFoundError
from wmr.state import FileStore, RegistryStore, StateStoreRouter

TEMPLATE = """
metadata: {name: Round Trip}
registry:
  - name: App Key
    path: 'HKCU:\\Software\\App'
    backup_name: app
  - name: App Theme
    path: 'HKCU:\\Software\\App'
    type: value
    key_name: Theme
    backup_name: theme
  - name: Machine Key
    path: 'HKLM:\\SOFTWARE\\App'
    backup_name: machine
files:
  - name: Git config
    path: '%USERPROFILE%\\.gitconfig'
    backup_name: gitconfig
  - name: Profile dir
    path: '%USERPROFILE%\\profile'
    type: directory
    backup_name: profile
  - name: Not there
    path: '%USERPROFILE%\\missing.txt'
    backup_name: missing
applications:
  - id: Git.Git
    manager: winget
"""


def _machine(root: Path) -> StateStoreRouter:
    root.mkdir(parents=True, exist_ok=True)
    return StateStoreRouter(
        RegistryStore(),
        FileStore(root=root, environment={"USERPROFILE": str(root / "home")}),
    )


@pytest.fixture
def source(tmp_path: Path) -> StateStoreRouter:
    """A machine with state to back up."""
    store = _machine(tmp_path / "source")
    store.set("HKCU:\\Software\\App", "Theme", "Dark")
    store.set("HKCU:\\Software\\App", "Size", 12, "dword")
    store.set("HKCU:\\Software\\App\\Window", "Pos", b"\x01\x02", "binary")
    store.set("HKLM:\\SOFTWARE\\App", "Mode", "machine")
    store.set("%USERPROFILE%\\.gitconfig", None, "[user]\nname = t\n")
    store.set("%USERPROFILE%\\profile", "a.ps1", "Write-Host a")
    return store


@pytest.fixture
def resolved(template_from, make_context):
    return resolve(template_from(TEMPLATE), make_context(hostname="LAPTOP"))


class TestBackup:
    """Tests for backup_configuration()."""

    def test_captures_every_present_entry(self, resolved, source, tmp_path: Path) -> None:
        target = tmp_path / "backup"
        report = backup_configuration(resolved, source, target)

        statuses = {o.name: o.status for o in report.outcomes}
        assert statuses == {
            "app": EntryStatus.DONE,
            "theme": EntryStatus.DONE,
            "machine": EntryStatus.DONE,
            "gitconfig": EntryStatus.DONE,
            "profile": EntryStatus.DONE,
            "missing": EntryStatus.MISSING,
            "Git.Git": EntryStatus.DONE,
        }
        assert report.ok

    def test_registry_artifact_layout(self, resolved, source, tmp_path: Path) -> None:
        target = tmp_path / "backup"
        backup_configuration(resolved, source, target)

        exported = json.loads((target / "registry" / "app.json").read_text())
        assert exported["values"]["Theme"] == {"type": "string", "data": "Dark"}
        assert exported["subkeys"]["Window"]["values"]["Pos"] == {"type": "binary", "data": "0102"}

        single = json.loads((target / "registry" / "theme.json").read_text())
        assert list(single["values"]) == ["Theme"]

    def test_manifest(self, resolved, source, tmp_path: Path) -> None:
        target = tmp_path / "backup"
        backup_configuration(resolved, source, target)

        manifest = read_manifest(target)
        assert manifest.template == "Round Trip"
        assert manifest.machine_name == "LAPTOP"
        assert manifest.entries["missing"].status is EntryStatus.MISSING
        assert manifest.entries["gitconfig"].artifact == "files/gitconfig"
        assert json.loads((target / "applications.json").read_text())[0]["id"] == "Git.Git"


class TestRestore:
    """Tests for restore_configuration()."""

    @pytest.fixture
    def backup_dir(self, resolved, source, tmp_path: Path) -> Path:
        target = tmp_path / "backup"
        backup_configuration(resolved, source, target)
        return target

    def test_round_trip_when_elevated(self, resolved, backup_dir, tmp_path: Path, elevated) -> None:
        fresh = _machine(tmp_path / "fresh")
        report = restore_configuration(resolved, fresh, backup_dir, privileges=elevated)

        assert report.ok
        assert fresh.get("HKCU:\\Software\\App", "Theme") == "Dark"
        assert fresh.get("HKCU:\\Software\\App", "Size") == 12
        assert fresh.get("HKCU:\\Software\\App\\Window", "Pos") == b"\x01\x02"
        assert fresh.get("HKLM:\\SOFTWARE\\App", "Mode") == "machine"
        assert fresh.get("%USERPROFILE%\\.gitconfig") == b"[user]\nname = t\n"
        assert fresh.get("%USERPROFILE%\\profile", "a.ps1") == b"Write-Host a"

    def test_machine_wide_entries_degrade_when_unprivileged(
        self, resolved, backup_dir, tmp_path: Path, unprivileged
    ) -> None:
        fresh = _machine(tmp_path / "fresh")
        report = restore_configuration(resolved, fresh, backup_dir, privileges=unprivileged)

        statuses = {o.name: o.status for o in report.outcomes}
        assert statuses["machine"] is EntryStatus.DEGRADED
        assert statuses["app"] is EntryStatus.DONE
        assert statuses["missing"] is EntryStatus.MISSING
        assert not fresh.exists("HKLM:\\SOFTWARE\\App")
        assert report.ok

    def test_what_if_writes_nothing(self, resolved, backup_dir, tmp_path: Path, elevated) -> None:
        fresh = _machine(tmp_path / "fresh")
        report = restore_configuration(resolved, fresh, backup_dir, privileges=elevated, what_if=True)

        assert report.count(EntryStatus.WOULD_RUN) == 5
        assert not fresh.exists("HKCU:\\Software\\App")
        assert not fresh.exists("%USERPROFILE%\\.gitconfig")

    def test_restore_section_pairs_by_name(self, template_from, make_context, backup_dir,
                                           tmp_path: Path, elevated) -> None:
        tpl = template_from("""
            metadata: {name: Restore Elsewhere}
            backup:
              files:
                - {path: '%USERPROFILE%\\.gitconfig', backup_name: gitconfig}
            restore:
              files:
                - {path: '%USERPROFILE%\\restored.gitconfig', backup_name: gitconfig}
        """)
        fresh = _machine(tmp_path / "fresh")
        report = restore_configuration(resolve(tpl, make_context()), fresh, backup_dir, privileges=elevated)

        assert [o.status for o in report.outcomes] == [EntryStatus.DONE]
        assert fresh.get("%USERPROFILE%\\restored.gitconfig") == b"[user]\nname = t\n"

    def test_missing_manifest(self, resolved, tmp_path: Path, elevated) -> None:
        with pytest.raises(NotFoundError):
            restore_configuration(resolved, _machine(tmp_path / "m"), tmp_path / "empty", privileges=elevated)


def test_artifact_name() -> None:
    assert artifact_name("shared/registry/theme.json") == "shared_registry_theme.json"
    assert artifact_name("HKCU:\\D:Value") == "HKCU_D_Value"
    assert artifact_name("..") == "entry"
    assert MANIFEST_NAME == "manifest.json"
