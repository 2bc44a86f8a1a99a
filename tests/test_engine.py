"""Tests for the resolution engine."""

from __future__ import annotations

import textwrap

import pytest

from wmr.engine import deep_merge, entry_identity, merge_fragment, resolve, substitute_placeholders
from wmr.errors import ComparisonError, ValidationError, ValidationFailure
from wmr.models import ResolvedConfiguration
from wmr.templates.schema import InheritanceMode, MergeStrategy, ValidationLevel

LAYERED = """
metadata:
  name: Layered
registry:
  - name: Theme
    path: 'HKCU:\\Software\\App'
    key_name: Theme
    type: value
    value: v0
    backup_name: theme
    inheritance_tags: [theme]
    value_names: [A]
  - name: Font
    path: 'HKCU:\\Software\\Font'
    backup_name: font
    inheritance_tags: [fonts]
machine_specific:
  - name: first
    selectors: {hostname: LAPTOP}
    registry:
      - path: 'HKCU:\\Software\\App'
        key_name: Theme
        type: value
        value: v1
        backup_name: theme
  - name: second
    selectors: {username: tester}
    registry:
      - path: 'HKCU:\\Software\\App'
        key_name: Theme
        type: value
        value: v2
        backup_name: theme
"""


def _theme(resolved: ResolvedConfiguration):
    return next(e for e in resolved.backup.registry if e.logical_name == "theme")


class TestScenario:
    """One template, two machines."""

    def test_laptop_gets_dark(self, template_from, theme_template_text, make_context) -> None:
        tpl = template_from(theme_template_text)
        resolved = resolve(tpl, make_context(hostname="LAPTOP"))
        assert resolved.backup.registry[0].value == "Dark"
        assert resolved.applied_configurations == ["laptop"]
        assert resolved.machine_name == "LAPTOP"

    def test_desktop_keeps_baseline(self, template_from, theme_template_text, make_context) -> None:
        tpl = template_from(theme_template_text)
        resolved = resolve(tpl, make_context(hostname="DESKTOP"))
        assert resolved.backup.registry[0].value == "Light"
        assert resolved.applied_configurations == []

    def test_resolution_is_deterministic(self, template_from, theme_template_text, make_context) -> None:
        tpl = template_from(theme_template_text)
        ctx = make_context(hostname="LAPTOP")
        assert resolve(tpl, ctx) == resolve(tpl, ctx)

    def test_template_is_not_mutated(self, template_from, theme_template_text, make_context) -> None:
        tpl = template_from(theme_template_text)
        before = tpl.model_dump()
        resolve(tpl, make_context(hostname="LAPTOP"))
        assert tpl.model_dump() == before

    def test_metadata_is_not_shared(self, template_from, make_context) -> None:
        tpl = template_from("""
            metadata: {name: Shared, tags: [ui], requires: [winget]}
            prerequisites:
              - {name: probe, command: echo ok, expected_output: ok}
        """)
        first = resolve(tpl, make_context())
        second = resolve(tpl, make_context())
        assert first.metadata == tpl.metadata
        assert first.metadata is not tpl.metadata
        assert first.metadata.tags is not tpl.metadata.tags
        assert first.metadata.requires is not second.metadata.requires
        assert first.prerequisites[0] is not tpl.prerequisites[0]

        first.metadata.tags.append("changed")
        assert tpl.metadata.tags == ["ui"]
        assert second.metadata.tags == ["ui"]


class TestMachineConfigurations:
    """Machine configurations merge in declaration order."""

    def test_later_configuration_wins(self, template_from, make_context) -> None:
        resolved = resolve(template_from(LAYERED), make_context(hostname="LAPTOP"))
        assert _theme(resolved).value == "v2"
        assert resolved.applied_configurations == ["first", "second"]

    def test_only_matching_configurations_apply(self, template_from, make_context) -> None:
        resolved = resolve(template_from(LAYERED), make_context(hostname="DESKTOP"))
        assert _theme(resolved).value == "v2"
        assert resolved.applied_configurations == ["second"]

    def test_explicit_empty_list_applies_nothing(self, template_from, make_context) -> None:
        resolved = resolve(template_from(LAYERED), make_context(hostname="LAPTOP"), machine_configs=[])
        assert _theme(resolved).value == "v0"

    def test_configurations_as_dicts(self, template_from, make_context) -> None:
        configs = [{
            "name": "extra",
            "registry": [{"path": "HKCU:\\Software\\Extra", "backup_name": "extra"}],
        }]
        resolved = resolve(template_from(LAYERED), make_context(), machine_configs=configs)
        assert [e.logical_name for e in resolved.backup.registry] == ["theme", "font", "extra"]

    def test_replace_drops_unlisted_fields(self, template_from, make_context) -> None:
        resolved = resolve(template_from(LAYERED), make_context(hostname="LAPTOP"))
        theme = _theme(resolved)
        assert theme.name == ""
        assert theme.value_names == []

    def test_deep_merge_keeps_baseline_fields(self, template_from, make_context) -> None:
        tpl = template_from("""
            metadata: {name: Deep}
            registry:
              - name: Theme
                path: 'HKCU:\\Software\\App'
                value_names: [A]
                inheritance_tags: [theme]
            machine_specific:
              - name: gaming
                merge_strategy: deep_merge
                registry:
                  - path: 'HKCU:\\Software\\App'
                    value_names: [B]
        """)
        (entry,) = resolve(tpl, make_context()).backup.registry
        assert entry.name == "Theme"
        assert entry.value_names == ["A", "B"]
        assert entry.inheritance_tags == ["theme"]

    def test_override_mode_replaces_whole_list(self, template_from, make_context) -> None:
        tpl = template_from("""
            metadata: {name: Override}
            configuration: {inheritance_mode: override}
            registry:
              - {path: 'HKCU:\\A'}
              - {path: 'HKCU:\\B'}
            files:
              - {path: '%APPDATA%\\x'}
            machine_specific:
              - name: all
                registry:
                  - {path: 'HKCU:\\C'}
        """)
        resolved = resolve(tpl, make_context())
        assert [e.path for e in resolved.backup.registry] == ["HKCU:\\C"]
        assert len(resolved.backup.files) == 1

    @pytest.mark.parametrize("mode, expected", [("override", 0), ("merge", 1)])
    def test_explicit_empty_list(self, template_from, make_context, mode: str, expected: int) -> None:
        """An empty list clears the kind in override mode and is a no-op in merge mode."""
        tpl = template_from(f"""
            metadata: {{name: Empty}}
            configuration: {{inheritance_mode: {mode}}}
            registry:
              - {{path: 'HKCU:\\A'}}
            files:
              - {{path: '%APPDATA%\\x'}}
            machine_specific:
              - name: all
                files: []
        """)
        resolved = resolve(tpl, make_context())
        assert len(resolved.backup.files) == expected
        assert len(resolved.backup.registry) == 1

    def test_baseline_precedence(self, template_from, make_context) -> None:
        tpl = template_from("""
            metadata: {name: Baseline first}
            configuration: {machine_precedence: false}
            registry:
              - {path: 'HKCU:\\A', key_name: X, value: base}
            machine_specific:
              - name: all
                registry:
                  - {path: 'HKCU:\\A', key_name: X, value: machine}
                  - {path: 'HKCU:\\B'}
        """)
        resolved = resolve(tpl, make_context())
        assert [e.value for e in resolved.backup.registry] == ["base", None]

    def test_comparison_error_is_fatal(self, template_from, make_context) -> None:
        tpl = template_from("""
            metadata: {name: Broken}
            machine_specific:
              - name: bad
                selectors: {bios.vendor: x}
        """)
        with pytest.raises(ComparisonError):
            resolve(tpl, make_context())


class TestInheritanceRules:
    """Rules apply cumulatively in declaration order."""

    def test_rules_are_cumulative(self, template_from, make_context) -> None:
        rules = [
            {"name": "value", "applies_to": ["backup.registry[theme].value"], "value": "ruled"},
            {"name": "tags", "applies_to": ["backup.registry[theme].inheritance_tags"],
             "action": "merge_append", "value": "extra"},
        ]
        resolved = resolve(template_from(LAYERED), make_context(), machine_configs=[], rules=rules)
        theme = _theme(resolved)
        assert theme.value == "ruled"
        assert theme.inheritance_tags == ["theme", "extra"]
        assert resolved.applied_rules == ["value", "tags"]

    def test_condition_gates_rule(self, template_from, make_context) -> None:
        rules = [{"name": "never", "applies_to": ["backup.registry[theme].value"],
                  "condition": {"hostname": "NOWHERE"}, "value": "ruled"}]
        resolved = resolve(template_from(LAYERED), make_context(), machine_configs=[], rules=rules)
        assert _theme(resolved).value == "v0"
        assert resolved.applied_rules == []

    def test_skip_by_tag(self, template_from, make_context) -> None:
        rules = [{"applies_to": ["registry"], "match_tags": ["fonts"], "action": "skip"}]
        resolved = resolve(template_from(LAYERED), make_context(), rules=rules)
        assert [e.logical_name for e in resolved.backup.registry] == ["theme"]

    def test_tagged_merge_without_value_is_noop(self, template_from, make_context) -> None:
        tpl = template_from("""
            metadata: {name: Tagged}
            registry:
              - {name: T, path: 'HKCU:\\T', inheritance_tags: [theme]}
            inheritance_rules:
              - name: theme merge
                applies_to: [registry]
                condition:
                  inheritance_tags: {contains: [theme]}
                action: merge
        """)
        resolved = resolve(tpl, make_context())
        assert resolved.backup.registry[0].name == "T"
        assert resolved.applied_rules == ["theme merge"]

    def test_tagged_override_updates_fields(self, template_from, make_context) -> None:
        rules = [{"applies_to": ["backup.registry"], "match_tags": ["theme"],
                  "action": "override", "value": {"action": "backup_only"}}]
        resolved = resolve(template_from(LAYERED), make_context(), machine_configs=[], rules=rules)
        actions = {e.logical_name: e.action for e in resolved.backup.registry}
        assert actions == {"theme": "backup_only", "font": "sync"}

    def test_entry_rule_appends_missing_entry(self, template_from, make_context) -> None:
        rules = [{"applies_to": ["backup.files[profile]"], "value": {"path": "%USERPROFILE%\\p.ps1"}}]
        resolved = resolve(template_from(LAYERED), make_context(), rules=rules)
        (entry,) = resolved.backup.files
        assert entry.backup_name == "profile"

    def test_entry_skip_removes_entry(self, template_from, make_context) -> None:
        rules = [{"applies_to": ["backup.registry[font]"], "action": "skip"}]
        resolved = resolve(template_from(LAYERED), make_context(), rules=rules)
        assert [e.logical_name for e in resolved.backup.registry] == ["theme"]

    def test_kind_override_replaces_list(self, template_from, make_context) -> None:
        rules = [{"applies_to": ["backup.registry"], "value": [{"path": "HKCU:\\Only"}]}]
        resolved = resolve(template_from(LAYERED), make_context(), rules=rules)
        assert [e.path for e in resolved.backup.registry] == ["HKCU:\\Only"]


class TestConditionalSections:
    """Conditional sections merge when their conditions hold."""

    SECTIONED = """
        metadata: {name: Touch}
        registry:
          - {path: 'HKCU:\\Base'}
        conditional_sections:
          - name: touch
            conditions:
              - type: hardware
                property: model
                expected_value: "(Surface|Yoga)"
                operator: matches
            logic: or
            registry:
              - {path: 'HKCU:\\Touch'}
    """

    def test_matching_section_merges(self, template_from, make_context) -> None:
        resolved = resolve(template_from(self.SECTIONED), make_context(model="Surface Pro"))
        assert [e.path for e in resolved.backup.registry] == ["HKCU:\\Base", "HKCU:\\Touch"]
        assert resolved.applied_sections == ["touch"]

    def test_other_machines_skip_section(self, template_from, make_context) -> None:
        resolved = resolve(template_from(self.SECTIONED), make_context(model="OptiPlex"))
        assert [e.path for e in resolved.backup.registry] == ["HKCU:\\Base"]


class TestPlaceholdersAndValidation:
    """Placeholders resolve from the context; levels decide what is fatal."""

    PLACEHOLDERS = """
        metadata: {name: Paths}
        files:
          - name: settings
            path: '${environment.APPDATA}\\App\\settings.json'
          - name: unknown
            path: '${environment.NOT_SET}\\x'
    """

    def test_known_placeholders_substituted(self, template_from, make_context) -> None:
        ctx = make_context(environment={"APPDATA": "C:\\Users\\t\\AppData"})
        resolved = resolve(template_from(self.PLACEHOLDERS), ctx)
        assert resolved.backup.files[0].path == "C:\\Users\\t\\AppData\\App\\settings.json"

    def test_unresolved_placeholder_warns_at_moderate(self, template_from, make_context) -> None:
        resolved = resolve(template_from(self.PLACEHOLDERS), make_context())
        assert resolved.backup.files[1].path == "${environment.NOT_SET}\\x"
        assert any("unresolved_placeholder" in w for w in resolved.warnings)

    def test_unresolved_placeholder_fatal_at_strict(self, template_from, make_context) -> None:
        with pytest.raises(ValidationError) as exc_info:
            resolve(template_from(self.PLACEHOLDERS), make_context(), validation_level="strict")
        assert exc_info.value.kind is ValidationFailure.UNRESOLVED_PLACEHOLDER

    def test_minimal_ignores_placeholders(self, template_from, make_context) -> None:
        resolved = resolve(template_from(self.PLACEHOLDERS), make_context(),
                           validation_level=ValidationLevel.MINIMAL)
        assert resolved.warnings == []
        assert resolved.validation_level is ValidationLevel.MINIMAL

    BROKEN_PAIRING = """
        metadata: {name: Pairs}
        backup:
          registry:
            - {path: 'HKCU:\\A', backup_name: a}
        restore:
          registry:
            - {path: 'HKCU:\\A', backup_name: missing}
    """

    def test_broken_pairing_fatal_at_strict(self, template_from, make_context) -> None:
        with pytest.raises(ValidationError) as exc_info:
            resolve(template_from(self.BROKEN_PAIRING), make_context(), validation_level="strict")
        assert exc_info.value.kind is ValidationFailure.BROKEN_PAIRING
        assert "missing" in exc_info.value.field

    def test_broken_pairing_warns_at_moderate(self, template_from, make_context) -> None:
        resolved = resolve(template_from(self.BROKEN_PAIRING), make_context())
        assert len(resolved.warnings) == 1
        assert "broken_pairing" in resolved.warnings[0]

    def test_broken_pairing_warns_at_minimal(self, template_from, make_context) -> None:
        resolved = resolve(template_from(self.BROKEN_PAIRING), make_context(), validation_level="minimal")
        assert len(resolved.warnings) == 1
        assert "broken_pairing" in resolved.warnings[0]

    def test_template_level_used_by_default(self, template_from, make_context) -> None:
        tpl = template_from(textwrap.dedent(self.BROKEN_PAIRING) + "configuration: {validation_level: strict}\n")
        with pytest.raises(ValidationError):
            resolve(tpl, make_context())


class TestMergePrimitives:
    """Tests for the plain-data merge helpers."""

    def test_deep_merge(self) -> None:
        base = {"a": 1, "b": {"c": [1, 2]}, "d": "x"}
        merged = deep_merge(base, {"b": {"c": [2, 3], "e": True}, "d": "y"})
        assert merged == {"a": 1, "b": {"c": [1, 2, 3], "e": True}, "d": "y"}
        assert base == {"a": 1, "b": {"c": [1, 2]}, "d": "x"}

    def test_entry_identity_is_case_insensitive(self) -> None:
        a = entry_identity("registry", {"path": "HKCU:\\Software\\App", "key_name": "Theme"})
        b = entry_identity("registry", {"path": "HKEY_CURRENT_USER\\software\\app", "key_name": "theme"})
        assert a == b
        assert entry_identity("applications", {"id": "Git.Git"}) == entry_identity("applications", {"name": "git.git"})

    def test_merge_fragment_leaves_absent_kinds(self) -> None:
        working = {
            "backup": {"registry": [{"path": "HKCU:\\A"}], "files": [{"path": "x"}], "applications": []},
            "restore": {"registry": [], "files": [], "applications": []},
        }
        merge_fragment(working, {"backup": {"registry": [{"path": "HKCU:\\B"}]}},
                       MergeStrategy.REPLACE, InheritanceMode.OVERRIDE)
        assert working["backup"]["registry"] == [{"path": "HKCU:\\B"}]
        assert working["backup"]["files"] == [{"path": "x"}]

        merge_fragment(working, {"backup": {"files": []}}, MergeStrategy.REPLACE, InheritanceMode.OVERRIDE)
        assert working["backup"]["files"] == []
        assert working["backup"]["registry"] == [{"path": "HKCU:\\B"}]

    def test_substitute_placeholders(self, make_context) -> None:
        ctx = make_context(hostname="LAPTOP", is_elevated=True)
        data, unresolved = substitute_placeholders(
            {"a": ["${hostname}-${is_elevated}", "${bogus.field}"]}, ctx
        )
        assert data == {"a": ["LAPTOP-true", "${bogus.field}"]}
        assert unresolved == ["${bogus.field}"]
