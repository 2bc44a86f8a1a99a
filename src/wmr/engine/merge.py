"""
Merge primitives for resolution.

The engine works on a plain-data copy of the configuration:

    {"backup":  {"registry": [...], "files": [...], "applications": [...]},
     "restore": {"registry": [...], "files": [...], "applications": [...]}}

Entries are dicts. Two entries are "the same entry" when their identity
matches: registry (path, key_name), files path, applications id or name,
all case-insensitive.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Optional

from ..context import MachineContext
from ..errors import ComparisonError
from ..state.base import normalize_path_key
from ..templates.schema import (
    SECTION_KINDS,
    SECTION_ROOTS,
    ConfigurationFragment,
    InheritanceMode,
    InheritanceRule,
    MergeStrategy,
    RuleAction,
    RulePath,
    TemplateSection,
    entry_logical_name,
)

logger = logging.getLogger("wmr.engine.merge")

PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")

Working = dict[str, dict[str, list[dict[str, Any]]]]


def dump_section(section: TemplateSection) -> dict[str, list[dict[str, Any]]]:
    """Plain-data deep copy of a section, keeping only fields that were set."""
    return {
        kind: copy.deepcopy([e.model_dump(exclude_unset=True) for e in getattr(section, kind)])
        for kind in SECTION_KINDS
    }


def dump_fragment(fragment: ConfigurationFragment) -> Working:
    """Plain-data copy of a fragment holding only the kinds it names.

    An explicit empty list is kept; a kind the fragment never mentions is left out.
    """
    dumped: Working = {}
    for root in SECTION_ROOTS:
        section = getattr(fragment, root)
        dumped[root] = {
            kind: entries
            for kind, entries in dump_section(section).items()
            if kind in section.model_fields_set
        }
    return dumped


def entry_identity(kind: str, entry: dict[str, Any]) -> tuple[str, ...]:
    """Merge identity of an entry within its kind."""
    if kind == "registry":
        return (normalize_path_key(entry.get("path", "")), str(entry.get("key_name") or "").lower())
    if kind == "files":
        return (normalize_path_key(entry.get("path", "")),)
    return (str(entry.get("id") or entry.get("name") or "").lower(),)


def deep_merge(base: Any, overlay: Any) -> Any:
    """Merge ``overlay`` into a copy of ``base``.

    Mappings merge key by key, lists append items not already present,
    anything else is replaced by the overlay.
    """
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = copy.deepcopy(base)
        for key, value in overlay.items():
            merged[key] = deep_merge(merged[key], value) if key in merged else copy.deepcopy(value)
        return merged
    if isinstance(base, list) and isinstance(overlay, list):
        merged_list = copy.deepcopy(base)
        for item in overlay:
            if item not in merged_list:
                merged_list.append(copy.deepcopy(item))
        return merged_list
    return copy.deepcopy(overlay)


def _merge_entries(
    kind: str,
    existing: list[dict[str, Any]],
    incoming: list[dict[str, Any]],
    strategy: MergeStrategy,
    machine_precedence: bool = True,
) -> list[dict[str, Any]]:
    result = list(existing)
    index = {entry_identity(kind, e): i for i, e in enumerate(result)}
    for item in incoming:
        ident = entry_identity(kind, item)
        if ident not in index:
            index[ident] = len(result)
            result.append(copy.deepcopy(item))
            continue
        if not machine_precedence:
            logger.debug("Keeping baseline %s entry %s", kind, ident)
            continue
        position = index[ident]
        if strategy is MergeStrategy.DEEP_MERGE:
            result[position] = deep_merge(result[position], item)
        else:
            result[position] = copy.deepcopy(item)
    return result


def merge_fragment(
    working: Working,
    fragment: Working,
    strategy: MergeStrategy = MergeStrategy.REPLACE,
    mode: InheritanceMode = InheritanceMode.MERGE,
    machine_precedence: bool = True,
) -> None:
    """Merge a fragment into ``working`` in place.

    Kinds absent from the fragment are untouched. In ``override`` mode a
    kind present in the fragment replaces the whole list, so an empty list
    clears it.
    """
    for root in SECTION_ROOTS:
        for kind in SECTION_KINDS:
            incoming = fragment.get(root, {}).get(kind)
            if incoming is None:
                continue
            if mode is InheritanceMode.OVERRIDE:
                working[root][kind] = copy.deepcopy(incoming)
            else:
                working[root][kind] = _merge_entries(
                    kind, working[root][kind], incoming, strategy, machine_precedence
                )


# ---------------------------------------------------------------------------
# Inheritance rules
# ---------------------------------------------------------------------------


def _tagged(entry: dict[str, Any], tags: list[str]) -> bool:
    entry_tags = {str(t).lower() for t in entry.get("inheritance_tags") or []}
    return any(t.lower() in entry_tags for t in tags)


def _apply_to_kind(entries: list[dict[str, Any]], kind: str, rule: InheritanceRule) -> list[dict[str, Any]]:
    if rule.match_tags:
        result = []
        for entry in entries:
            if not _tagged(entry, rule.match_tags):
                result.append(entry)
            elif rule.action is RuleAction.OVERRIDE:
                result.append({**entry, **copy.deepcopy(rule.value or {})})
            elif rule.action is RuleAction.MERGE_APPEND:
                result.append(deep_merge(entry, rule.value or {}))
            # SKIP drops the entry.
        return result

    if rule.action is RuleAction.OVERRIDE:
        return copy.deepcopy(rule.value)
    if rule.action is RuleAction.MERGE_APPEND:
        return _merge_entries(kind, entries, rule.value, MergeStrategy.DEEP_MERGE)
    return []


def _apply_to_entry(entries: list[dict[str, Any]], path: RulePath, rule: InheritanceRule) -> list[dict[str, Any]]:
    matches = [i for i, e in enumerate(entries) if entry_logical_name(e) == path.entry]

    if path.field is not None:
        for i in matches:
            entry = dict(entries[i])
            if rule.action is RuleAction.SKIP:
                entry.pop(path.field, None)
            elif rule.action is RuleAction.MERGE_APPEND and path.field in entry:
                current = entry[path.field]
                if isinstance(current, list) and not isinstance(rule.value, list):
                    entry[path.field] = deep_merge(current, [rule.value])
                else:
                    entry[path.field] = deep_merge(current, rule.value)
            else:
                entry[path.field] = copy.deepcopy(rule.value)
            entries[i] = entry
        if not matches:
            logger.debug("Rule '%s': no entry named %r at %s", rule.name, path.entry, path)
        return entries

    if rule.action is RuleAction.SKIP:
        return [e for i, e in enumerate(entries) if i not in matches]

    if not matches:
        new_entry = copy.deepcopy(rule.value)
        if not any(new_entry.get(k) for k in ("backup_name", "dynamic_state_path", "name")):
            new_entry["backup_name"] = path.entry
        return entries + [new_entry]

    for i in matches:
        if rule.action is RuleAction.OVERRIDE:
            entries[i] = copy.deepcopy(rule.value)
        else:
            entries[i] = deep_merge(entries[i], rule.value)
    return entries


def apply_rule(working: Working, rule: InheritanceRule) -> None:
    """Apply one inheritance rule's action at each of its paths, in place."""
    for path in rule.paths:
        entries = list(working[path.root][path.kind])
        if path.entry is None:
            working[path.root][path.kind] = _apply_to_kind(entries, path.kind, rule)
        else:
            working[path.root][path.kind] = _apply_to_entry(entries, path, rule)
        logger.debug("Rule '%s': %s at %s", rule.name, rule.action.value, path)


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------


def _placeholder_value(token: str, context: MachineContext) -> Optional[str]:
    try:
        value = context.lookup(token.strip())
    except ComparisonError:
        return None
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def substitute_placeholders(data: Any, context: MachineContext) -> tuple[Any, list[str]]:
    """Replace ``${field.path}`` tokens with Machine Context values.

    Returns:
        (new data, tokens that could not be resolved)
    """
    unresolved: list[str] = []

    def replace(match: re.Match) -> str:
        value = _placeholder_value(match.group(1), context)
        if value is None:
            unresolved.append(match.group(0))
            return match.group(0)
        return value

    def walk(node: Any) -> Any:
        if isinstance(node, str):
            return PLACEHOLDER_RE.sub(replace, node)
        if isinstance(node, dict):
            return {k: walk(v) for k, v in node.items()}
        if isinstance(node, list):
            return [walk(v) for v in node]
        return node

    return walk(data), unresolved
