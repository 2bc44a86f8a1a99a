"""Tests for the EngineRuntime."""

from __future__ import annotations

from pathlib import Path

import pytest

from wmr.config import EngineConfig
from wmr.errors import TemplateNotFoundError, ValidationError
from wmr.runtime import EngineRuntime, get_runtime
from wmr.state import RegistryStore

PAIRING = """
metadata: {name: Pairing}
backup:
  registry:
    - {path: 'HKCU:\\A', backup_name: a}
restore:
  registry:
    - {path: 'HKCU:\\A', backup_name: b}
"""


class TestEngineRuntime:
    """Tests for the runtime wiring."""

    def test_loads_config_from_home(self, wmr_home: Path) -> None:
        """The runtime reads config.yaml under its home."""
        runtime = get_runtime(wmr_home)
        assert runtime.home == wmr_home
        assert runtime.config.machine_name == "LAPTOP"
        assert runtime.templates.search_paths[0] == wmr_home / "templates"

    def test_context_uses_configured_identity(self, wmr_home: Path) -> None:
        ctx = get_runtime(wmr_home).context()
        assert ctx.machine_name == "LAPTOP"
        assert ctx.hostname == "LAPTOP"

    def test_context_arguments_win(self, wmr_home: Path) -> None:
        ctx = get_runtime(wmr_home).context(hostname="DESKTOP")
        assert ctx.hostname == "DESKTOP"

    def test_store_persists_registry(self, wmr_home: Path) -> None:
        """Registry writes land in the configured registry_file."""
        runtime = get_runtime(wmr_home)
        assert isinstance(runtime.store.registry, RegistryStore)
        runtime.store.set("HKCU:\\Software\\App", "Theme", "Dark")
        assert get_runtime(wmr_home).store.get("HKCU:\\Software\\App", "Theme") == "Dark"

    def test_resolve_by_key(self, wmr_home: Path, write_template, theme_template_text: str) -> None:
        write_template("theme.yaml", theme_template_text, wmr_home / "templates")
        resolved = get_runtime(wmr_home).resolve("theme")
        assert resolved.backup.registry[0].value == "Dark"

    def test_resolve_unknown_template(self, wmr_home: Path) -> None:
        with pytest.raises(TemplateNotFoundError):
            get_runtime(wmr_home).resolve("nope")

    def test_configured_level_applies_when_template_is_silent(
        self, wmr_home: Path, template_from
    ) -> None:
        runtime = EngineRuntime(home=wmr_home, config=EngineConfig(validation_level="strict"))
        with pytest.raises(ValidationError):
            runtime.resolve(template_from(PAIRING))

    def test_template_level_wins_over_config(self, wmr_home: Path, template_from) -> None:
        runtime = EngineRuntime(home=wmr_home, config=EngineConfig(validation_level="strict"))
        tpl = template_from(PAIRING + "configuration: {validation_level: moderate}\n")
        resolved = runtime.resolve(tpl)
        assert len(resolved.warnings) == 1

    def test_explicit_level_wins(self, wmr_home: Path, template_from) -> None:
        runtime = EngineRuntime(home=wmr_home, config=EngineConfig(validation_level="strict"))
        resolved = runtime.resolve(template_from(PAIRING), validation_level="minimal")
        assert resolved.validation_level == "minimal"
        assert len(resolved.warnings) == 1

    def test_no_prompt_disables_prompt(self, tmp_path: Path) -> None:
        """With no_prompt the prompt strategy is never consulted."""
        asked: list[str] = []
        runtime = EngineRuntime(home=tmp_path, prompt=lambda reason: asked.append(reason) or True)
        if not runtime.privileges.is_elevated():
            assert runtime.privileges.request_elevation("x") is False
        assert asked == []
