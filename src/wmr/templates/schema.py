"""
Pydantic models for backup/restore template documents.

A Template describes what to capture (registry keys, files, application
lists) independent of any machine. Machine configurations, inheritance
rules and conditional sections layer machine-aware variation on top of
that shared baseline; the resolution engine folds them into one
ResolvedConfiguration.

Both the flat layout of the classic templates (``registry:`` at the top)
and the inheritance layout (``shared:`` + ``machine_specific:``) load
into the same model.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..selectors import Criteria
from ..state.base import parse_registry_path

SECTION_KINDS = ("registry", "files", "applications")
SECTION_ROOTS = ("backup", "restore")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class _LenientEnum(str, Enum):
    """Accepts any casing and hyphens for underscores."""

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            for member in cls:
                if member.value == key:
                    return member
        return None


class OnMissing(_LenientEnum):
    """What to do when a prerequisite is not met."""

    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


class ValidationLevel(_LenientEnum):
    """How aggressively a resolved configuration is checked."""

    MINIMAL = "minimal"
    MODERATE = "moderate"
    STRICT = "strict"


class InheritanceMode(_LenientEnum):
    """How machine fragments combine with the baseline lists."""

    MERGE = "merge"
    OVERRIDE = "override"


class MergeStrategy(_LenientEnum):
    """How a matching machine entry combines with the baseline entry."""

    REPLACE = "replace"
    DEEP_MERGE = "deep_merge"


class RuleAction(_LenientEnum):
    """Inheritance rule directives."""

    OVERRIDE = "override"
    MERGE_APPEND = "merge_append"
    SKIP = "skip"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str) and value.strip().lower() in ("merge", "append"):
            return cls.MERGE_APPEND
        return super()._missing_(value)


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


def entry_logical_name(entry: dict[str, Any]) -> str:
    """Logical backup name of an entry: backup_name, dynamic_state_path, name, then path/id."""
    for key in ("backup_name", "dynamic_state_path", "name"):
        if entry.get(key):
            return str(entry[key])
    path = entry.get("path")
    if path and entry.get("key_name"):
        return f"{path}:{entry['key_name']}"
    return str(path or entry.get("id") or "")


class _Entry(BaseModel):
    """Fields shared by registry, file and application entries."""

    model_config = ConfigDict(frozen=True, extra="allow")

    name: str = ""
    action: str = "sync"
    dynamic_state_path: Optional[str] = None
    backup_name: Optional[str] = None
    inheritance_tags: list[str] = Field(default_factory=list)
    inheritance_priority: int = 50

    @property
    def logical_name(self) -> str:
        """Name that pairs a restore entry with the backup entry it restores."""
        return entry_logical_name(self.model_dump())


class RegistryEntry(_Entry):
    """A registry key (``type: key``) or a single value (``type: value``)."""

    path: str
    type: str = "key"
    key_name: Optional[str] = None
    value_names: list[str] = Field(default_factory=list)
    value: Any = None
    value_type: Optional[str] = None

    @field_validator("path")
    @classmethod
    def path_must_have_hive(cls, v: str) -> str:
        """Registry entries must start with a recognized hive."""
        if parse_registry_path(v) is None:
            raise ValueError(f"not a registry path (no recognized hive): {v!r}")
        return v

    @property
    def machine_wide(self) -> bool:
        parsed = parse_registry_path(self.path)
        return bool(parsed and parsed.machine_wide)


class FileEntry(_Entry):
    """A file or directory to copy."""

    path: str
    type: str = "file"


class ApplicationEntry(_Entry):
    """An application package reference."""

    id: Optional[str] = None
    manager: Optional[str] = None
    version: Optional[str] = None

    @model_validator(mode="after")
    def needs_identifier(self) -> "ApplicationEntry":
        """An application needs a name or a package id."""
        if not (self.name or self.id):
            raise ValueError("application entry needs a 'name' or an 'id'")
        return self


class TemplateSection(BaseModel):
    """Ordered registry/files/applications lists (a backup or restore side)."""

    model_config = ConfigDict(frozen=True)

    registry: list[RegistryEntry] = Field(default_factory=list)
    files: list[FileEntry] = Field(default_factory=list)
    applications: list[ApplicationEntry] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.registry or self.files or self.applications)

    def entries(self) -> list[tuple[str, _Entry]]:
        """Every entry with its kind, in section order."""
        return (
            [("registry", e) for e in self.registry]
            + [("files", e) for e in self.files]
            + [("applications", e) for e in self.applications]
        )


def _lift_sections(data: dict[str, Any]) -> dict[str, Any]:
    """Move top-level registry/files/applications into ``backup``."""
    data = dict(data)
    backup = dict(data.get("backup") or {})
    for kind in SECTION_KINDS:
        if kind in data:
            backup[kind] = list(backup.get(kind) or []) + list(data.pop(kind) or [])
    if backup:
        data["backup"] = backup
    return data


class ConfigurationFragment(BaseModel):
    """A partial configuration merged over the baseline."""

    model_config = ConfigDict(frozen=True)

    backup: TemplateSection = Field(default_factory=TemplateSection)
    restore: TemplateSection = Field(default_factory=TemplateSection)

    @model_validator(mode="before")
    @classmethod
    def _flat_layout(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _lift_sections(data)
        return data


def _collect_fragment(data: dict[str, Any], target: str) -> dict[str, Any]:
    """Gather fragment keys of a machine config or section under ``target``."""
    data = dict(data)
    if target not in data:
        fragment = {k: data.pop(k) for k in SECTION_ROOTS + SECTION_KINDS if k in data}
        data[target] = fragment
    return data


# ---------------------------------------------------------------------------
# Rule paths
# ---------------------------------------------------------------------------

_RULE_PATH_RE = re.compile(
    r"^(?:(?P<root>backup|restore)\.)?"
    r"(?P<kind>registry|files|applications)"
    r"(?:\[(?P<entry>[^\]]+)\])?"
    r"(?:\.(?P<field>[A-Za-z_]\w*))?$"
)


@dataclass(frozen=True)
class RulePath:
    """Where an inheritance rule acts: a list, one entry, or one field."""

    root: str
    kind: str
    entry: Optional[str] = None
    field: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.root}.{self.kind}"
        if self.entry is not None:
            text += f"[{self.entry}]"
        if self.field is not None:
            text += f".{self.field}"
        return text


def expand_rule_path(text: str) -> list[RulePath]:
    """Parse a rule path; a bare kind expands to both backup and restore.

    Raises:
        ValueError: If the path is not ``[root.]kind[[entry]][.field]``.
    """
    match = _RULE_PATH_RE.match(text.strip())
    if not match:
        raise ValueError(
            f"invalid rule path {text!r}: expected [backup|restore.]"
            "registry|files|applications[[backup_name]][.field]"
        )
    if match.group("field") and not match.group("entry"):
        raise ValueError(f"invalid rule path {text!r}: a field needs an [entry]")
    roots = (match.group("root"),) if match.group("root") else SECTION_ROOTS
    return [
        RulePath(root, match.group("kind"), match.group("entry"), match.group("field"))
        for root in roots
    ]


# ---------------------------------------------------------------------------
# Inheritance layers
# ---------------------------------------------------------------------------


class MachineConfiguration(BaseModel):
    """Overrides that apply only on machines matching every selector."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    description: str = ""
    priority: int = 50
    selectors: Criteria = Field(default_factory=Criteria)
    merge_strategy: MergeStrategy = MergeStrategy.REPLACE
    overrides: ConfigurationFragment = Field(default_factory=ConfigurationFragment)

    @model_validator(mode="before")
    @classmethod
    def _original_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "machine_selectors" in data and "selectors" not in data:
            data["selectors"] = data.pop("machine_selectors")
        return _collect_fragment(data, "overrides")


class InheritanceRule(BaseModel):
    """A condition plus a merge directive applied at one or more paths."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    description: str = ""
    applies_to: list[str]
    condition: Criteria = Field(default_factory=Criteria)
    match_tags: list[str] = Field(default_factory=list)
    action: RuleAction = RuleAction.OVERRIDE
    value: Any = None
    parameters: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _original_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if str(data.get("action", "")).lower() == "transform":
            raise ValueError("script 'transform' rules are not supported; use ${field} placeholders")
        condition = data.get("condition")
        if isinstance(condition, dict) and "inheritance_tags" in condition:
            condition = dict(condition)
            tags = condition.pop("inheritance_tags") or {}
            wanted = tags.get("contains", []) if isinstance(tags, dict) else tags
            data["match_tags"] = [wanted] if isinstance(wanted, str) else list(wanted)
            data["condition"] = condition
        if isinstance(data.get("applies_to"), str):
            data["applies_to"] = [data["applies_to"]]
        return data

    @field_validator("applies_to")
    @classmethod
    def paths_must_parse(cls, v: list[str]) -> list[str]:
        """Every path must be a valid rule path."""
        if not v:
            raise ValueError("applies_to must name at least one path")
        for path in v:
            expand_rule_path(path)
        return v

    @model_validator(mode="after")
    def value_fits_paths(self) -> "InheritanceRule":
        """The value shape must match what the action does at each path."""
        if self.action is RuleAction.SKIP:
            return self
        for path in self.paths:
            if path.field is not None:
                continue
            if path.entry is None and not self.match_tags:
                if not isinstance(self.value, list) or not all(isinstance(e, dict) for e in self.value):
                    raise ValueError(f"{self.action.value} at '{path}' needs a list of entries as value")
            elif path.entry is None and self.value is None:
                continue
            elif not isinstance(self.value, dict):
                raise ValueError(f"{self.action.value} at '{path}' needs a mapping as value")
        return self

    @property
    def paths(self) -> list[RulePath]:
        expanded: list[RulePath] = []
        for path in self.applies_to:
            expanded.extend(expand_rule_path(path))
        return expanded


class ConditionalSection(BaseModel):
    """A fragment merged only when its conditions hold."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    description: str = ""
    conditions: Criteria = Field(default_factory=Criteria)
    fragment: ConfigurationFragment = Field(default_factory=ConfigurationFragment)

    @model_validator(mode="before")
    @classmethod
    def _original_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        conditions = data.pop("conditions", None)
        if conditions is None:
            conditions = data.pop("condition", None)
        logic = data.pop("logic", None)
        if isinstance(conditions, list):
            conditions = {"comparisons": conditions}
        if logic is not None:
            conditions = dict(conditions or {})
            conditions["logic"] = logic
        if conditions is not None:
            data["conditions"] = conditions
        return _collect_fragment(data, "fragment")


class InheritanceSettings(BaseModel):
    """The template's ``configuration:`` block."""

    model_config = ConfigDict(frozen=True)

    inheritance_mode: InheritanceMode = InheritanceMode.MERGE
    machine_precedence: bool = True
    validation_level: ValidationLevel = ValidationLevel.MODERATE
    fallback_strategy: str = "use_shared"


# ---------------------------------------------------------------------------
# Top-level template
# ---------------------------------------------------------------------------


class TemplateMetadata(BaseModel):
    """Identity and description of a template."""

    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    version: str = "1.0"
    description: str = ""
    category: str = ""
    author: str = ""
    tags: list[str] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def version_as_text(cls, v: Any) -> Any:
        """YAML reads ``version: 1.0`` as a float."""
        return str(v) if isinstance(v, (int, float)) else v


class Prerequisite(BaseModel):
    """A probe that must produce ``expected_output`` before the template runs."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str = "script"
    name: str = ""
    inline_script: Optional[str] = None
    command: Optional[str] = None
    expected_output: str = ""
    on_missing: OnMissing = OnMissing.WARN

    @property
    def probe(self) -> str:
        return self.inline_script or self.command or ""


class Template(BaseModel):
    """A complete backup/restore template.

    Immutable once loaded; the resolution engine never modifies it.
    """

    model_config = ConfigDict(frozen=True)

    metadata: TemplateMetadata
    prerequisites: list[Prerequisite] = Field(default_factory=list)
    backup: TemplateSection = Field(default_factory=TemplateSection)
    restore: TemplateSection = Field(default_factory=TemplateSection)
    configuration: InheritanceSettings = Field(default_factory=InheritanceSettings)
    machine_specific: list[MachineConfiguration] = Field(default_factory=list)
    inheritance_rules: list[InheritanceRule] = Field(default_factory=list)
    conditional_sections: list[ConditionalSection] = Field(default_factory=list)
    source_path: Optional[str] = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _flat_and_shared_layouts(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _lift_sections(data)
        shared = data.pop("shared", None)
        if isinstance(shared, dict):
            backup = dict(data.get("backup") or {})
            for kind in SECTION_KINDS:
                if shared.get(kind):
                    backup[kind] = list(shared[kind]) + list(backup.get(kind) or [])
            data["backup"] = backup
            if shared.get("prerequisites"):
                data["prerequisites"] = list(shared["prerequisites"]) + list(
                    data.get("prerequisites") or []
                )
        return data

    @property
    def name(self) -> str:
        return self.metadata.name

    def all_sections(self) -> list[TemplateSection]:
        """Baseline plus every layered section, for whole-template scans."""
        sections = [self.backup, self.restore]
        for config in self.machine_specific:
            sections += [config.overrides.backup, config.overrides.restore]
        for section in self.conditional_sections:
            sections += [section.fragment.backup, section.fragment.restore]
        return sections
