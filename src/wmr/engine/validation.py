"""
Checks applied to a resolved configuration.

minimal   schema checks fatal; broken pairings warn
moderate  schema checks fatal; broken pairings and leftover placeholders warn
strict    everything fatal
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import ValidationError, ValidationFailure
from ..models import ResolvedConfiguration
from ..templates.schema import SECTION_KINDS, ValidationLevel
from .merge import PLACEHOLDER_RE

logger = logging.getLogger("wmr.engine.validation")


@dataclass
class ValidationReport:
    """Findings for one resolved configuration.

    Attributes:
        level: Level the checks ran at.
        errors: Fatal findings, in check order.
        warnings: Non-fatal findings (minimal and moderate levels).
    """

    level: ValidationLevel
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _schema_findings(resolved: ResolvedConfiguration) -> list[ValidationError]:
    findings = []
    if not resolved.metadata.name.strip():
        findings.append(ValidationError(
            ValidationFailure.MISSING_FIELD, "metadata.name", "template name is empty",
        ))
    for root in ("backup", "restore"):
        for kind, entry in getattr(resolved, root).entries():
            if kind != "applications" and not getattr(entry, "path", "").strip():
                findings.append(ValidationError(
                    ValidationFailure.MISSING_FIELD,
                    f"{root}.{kind}[{entry.logical_name}].path",
                    "entry has an empty path",
                ))
    return findings


def _pairing_findings(resolved: ResolvedConfiguration) -> list[ValidationError]:
    available = {entry.logical_name for _, entry in resolved.backup.entries()}
    findings = []
    for kind, entry in resolved.restore.entries():
        wanted = entry.logical_name
        if wanted not in available:
            findings.append(ValidationError(
                ValidationFailure.BROKEN_PAIRING,
                f"restore.{kind}[{wanted}]",
                "restore entry has no matching backup entry",
                expected=f"a backup entry named {wanted!r}",
                actual=None,
            ))
    return findings


def _find_placeholders(node: Any, location: str, found: list[tuple[str, str]]) -> None:
    if isinstance(node, str):
        for match in PLACEHOLDER_RE.finditer(node):
            found.append((location, match.group(0)))
    elif isinstance(node, dict):
        for key, value in node.items():
            _find_placeholders(value, f"{location}.{key}", found)
    elif isinstance(node, list):
        for i, value in enumerate(node):
            _find_placeholders(value, f"{location}[{i}]", found)


def _placeholder_findings(resolved: ResolvedConfiguration) -> list[ValidationError]:
    found: list[tuple[str, str]] = []
    for root in ("backup", "restore"):
        section = getattr(resolved, root)
        for kind in SECTION_KINDS:
            for entry in getattr(section, kind):
                _find_placeholders(entry.model_dump(), f"{root}.{kind}[{entry.logical_name}]", found)
    return [
        ValidationError(
            ValidationFailure.UNRESOLVED_PLACEHOLDER,
            location,
            "placeholder could not be resolved from the machine context",
            actual=token,
        )
        for location, token in found
    ]


def check_resolved_configuration(
    resolved: ResolvedConfiguration,
    level: Optional[ValidationLevel] = None,
) -> ValidationReport:
    """Run every check for ``level`` without raising.

    Args:
        resolved: Configuration to check.
        level: Validation level; defaults to the configuration's own.

    Returns:
        A ValidationReport. ``report.ok`` is the pass/fail answer.
    """
    level = ValidationLevel(level) if level is not None else resolved.validation_level
    report = ValidationReport(level=level, errors=_schema_findings(resolved))
    if level is ValidationLevel.MINIMAL:
        report.warnings.extend(str(f) for f in _pairing_findings(resolved))
        return report

    findings = _pairing_findings(resolved) + _placeholder_findings(resolved)
    if level is ValidationLevel.STRICT:
        report.errors.extend(findings)
    else:
        report.warnings.extend(str(f) for f in findings)
    return report


def validate_resolved(
    resolved: ResolvedConfiguration,
    level: Optional[ValidationLevel] = None,
) -> list[str]:
    """Raise the first fatal finding; return the warnings otherwise.

    Raises:
        ValidationError: First fatal finding for ``level``.
    """
    report = check_resolved_configuration(resolved, level)
    if report.errors:
        raise report.errors[0]
    for warning in report.warnings:
        logger.warning("%s: %s", resolved.name, warning)
    return report.warnings
