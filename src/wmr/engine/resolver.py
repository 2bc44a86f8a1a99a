"""
Inheritance resolution — fold a template's layers into one configuration.

Pipeline, each step over a private deep copy of the baseline:

    1. baseline backup/restore sections
    2. matching machine configurations, in declaration order
    3. inheritance rules whose condition holds, in declaration order
    4. conditional sections whose conditions hold, in declaration order
    5. ${field} placeholder substitution from the machine context
    6. validation at the requested level (fail fast)

resolve() reads only its arguments and returns a new frozen value. It
performs no I/O, so concurrent calls over independent inputs are safe.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..context import MachineContext
from ..errors import ValidationError, ValidationFailure
from ..models import ResolvedConfiguration
from ..selectors import applicable_configurations, match_selectors
from ..templates.schema import (
    ConditionalSection,
    InheritanceRule,
    MachineConfiguration,
    Template,
    ValidationLevel,
)
from .merge import Working, apply_rule, dump_fragment, dump_section, merge_fragment, substitute_placeholders
from .validation import validate_resolved

logger = logging.getLogger("wmr.engine")


def _as_models(items: Iterable[Any], model: type) -> list:
    return [item if isinstance(item, model) else model.model_validate(item) for item in items]


def _baseline(template: Template) -> Working:
    return {"backup": dump_section(template.backup), "restore": dump_section(template.restore)}


def _build(
    template: Template,
    working: Working,
    context: MachineContext,
    level: ValidationLevel,
    applied: dict[str, list[str]],
) -> ResolvedConfiguration:
    try:
        return ResolvedConfiguration.model_validate({
            "metadata": template.metadata.model_dump(exclude_unset=True),
            "prerequisites": [p.model_dump(exclude_unset=True) for p in template.prerequisites],
            "backup": working["backup"],
            "restore": working["restore"],
            "validation_level": level,
            "machine_name": context.machine_name,
            "hostname": context.hostname,
            "applied_configurations": applied["configurations"],
            "applied_rules": applied["rules"],
            "applied_sections": applied["sections"],
        })
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationError(
            ValidationFailure.MISSING_FIELD,
            location,
            first["msg"],
        ) from exc


def resolve(
    template: Template,
    context: MachineContext,
    machine_configs: Optional[Iterable[Union[MachineConfiguration, dict]]] = None,
    rules: Optional[Iterable[Union[InheritanceRule, dict]]] = None,
    sections: Optional[Iterable[Union[ConditionalSection, dict]]] = None,
    validation_level: Optional[Union[ValidationLevel, str]] = None,
) -> ResolvedConfiguration:
    """Resolve a template against a machine context.

    Args:
        template: The loaded template. Never modified.
        context: Snapshot of the machine being resolved for.
        machine_configs: Machine configurations to consider. None uses
            the template's ``machine_specific`` list; pass ``[]`` for none.
        rules: Inheritance rules. None uses the template's own.
        sections: Conditional sections. None uses the template's own.
        validation_level: Overrides the template's configured level.

    Returns:
        A new ResolvedConfiguration.

    Raises:
        ComparisonError: A selector or condition could not be evaluated.
        ValidationError: First fatal validation finding.
    """
    settings = template.configuration
    level = ValidationLevel(validation_level) if validation_level is not None else settings.validation_level

    machine_configs = _as_models(
        template.machine_specific if machine_configs is None else machine_configs, MachineConfiguration
    )
    rules = _as_models(template.inheritance_rules if rules is None else rules, InheritanceRule)
    sections = _as_models(
        template.conditional_sections if sections is None else sections, ConditionalSection
    )

    working = _baseline(template)
    applied: dict[str, list[str]] = {"configurations": [], "rules": [], "sections": []}

    for config in applicable_configurations(machine_configs, context):
        merge_fragment(
            working,
            dump_fragment(config.overrides),
            strategy=config.merge_strategy,
            mode=settings.inheritance_mode,
            machine_precedence=settings.machine_precedence,
        )
        applied["configurations"].append(config.name)

    for rule in rules:
        if not match_selectors(rule.condition, context):
            logger.debug("Rule '%s' condition not met", rule.name)
            continue
        apply_rule(working, rule)
        applied["rules"].append(rule.name)

    for section in sections:
        if not match_selectors(section.conditions, context):
            logger.debug("Conditional section '%s' not met", section.name)
            continue
        merge_fragment(working, dump_fragment(section.fragment), mode=settings.inheritance_mode)
        applied["sections"].append(section.name)

    working, unresolved = substitute_placeholders(working, context)
    if unresolved:
        logger.debug("Unresolved placeholders in '%s': %s", template.name, ", ".join(unresolved))

    resolved = _build(template, working, context, level, applied)
    warnings = validate_resolved(resolved, level)

    logger.info(
        "Resolved '%s' for %s: %d machine config(s), %d rule(s), %d section(s)",
        template.name,
        context.machine_name or context.hostname,
        len(applied["configurations"]),
        len(applied["rules"]),
        len(applied["sections"]),
    )
    if warnings:
        return resolved.model_copy(update={"warnings": warnings})
    return resolved
