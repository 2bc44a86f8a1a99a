"""
Selector Matcher — field-level comparisons against a Machine Context.

The same vocabulary (equals, equals_ci, contains, matches) drives machine
selectors, inheritance rule conditions and conditional sections.

Selectors may be written in two shapes:

    selectors:                          # mapping form
      hostname: {operator: equals, value: LAPTOP}
      username: {op: contains, value: admin}   # op is short for operator
      environment.USERDOMAIN: CORP      # bare value means equals

    machine_selectors:                  # list form
      - type: machine_name
        value: GAMING-RIG
        operator: equals
        case_sensitive: false
      - type: environment_variable
        value: PROCESSOR_IDENTIFIER
        expected_value: ".*Intel.*"
        operator: matches
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .context import MachineContext
from .errors import ComparisonError

if TYPE_CHECKING:
    from .templates.schema import MachineConfiguration

logger = logging.getLogger("wmr.selectors")


class Operator(str, Enum):
    """Comparison operators."""

    EQUALS = "equals"
    EQUALS_CI = "equals_ci"
    CONTAINS = "contains"
    MATCHES = "matches"

    @classmethod
    def _missing_(cls, value: object) -> "Operator | None":
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            for member in cls:
                if member.value == key:
                    return member
        return None


class Logic(str, Enum):
    """How the comparisons of a criteria set combine."""

    AND = "and"
    OR = "or"


# Original list-form selector types and the context field they read.
_TYPE_FIELDS = {
    "machine_name": "machine_name",
    "hostname": "hostname",
    "hostname_pattern": "hostname",
    "username": "username",
    "is_elevated": "is_elevated",
}

_PROBE_TYPES = ("registry_value", "hardware_check", "software_check", "script")


class Comparison(BaseModel):
    """One field comparison: ``lookup(field) <operator> value``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str
    operator: Operator = Field(Operator.EQUALS, validation_alias=AliasChoices("operator", "op"))
    value: Any
    case_sensitive: bool = True

    @field_validator("field")
    @classmethod
    def field_must_be_set(cls, v: str) -> str:
        """Reject empty field paths."""
        if not v.strip():
            raise ValueError("selector field must not be empty")
        return v.strip()

    @model_validator(mode="before")
    @classmethod
    def _from_list_form(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "field" in data or "type" not in data:
            return data

        data = dict(data)
        kind = str(data.pop("type")).lower()
        if kind in _PROBE_TYPES:
            raise ValueError(
                f"selector type '{kind}' needs a live probe; "
                "express it as a machine context field instead"
            )
        if kind == "environment_variable":
            data["field"] = f"environment.{data.pop('value')}"
            data["value"] = data.pop("expected_value", None)
        elif kind in ("hardware", "software"):
            data["field"] = f"{kind}.{data.pop('property', None) or data.pop('name', '')}"
            if "expected_value" in data:
                data["value"] = data.pop("expected_value")
        elif kind == "field":
            data["field"] = data.pop("path", None) or data.pop("name", "")
            if "expected_value" in data:
                data["value"] = data.pop("expected_value")
        elif kind in _TYPE_FIELDS:
            data["field"] = _TYPE_FIELDS[kind]
            if "expected_value" in data:
                data["value"] = data.pop("expected_value")
        else:
            raise ValueError(f"unknown selector type '{kind}'")
        return data


class Criteria(BaseModel):
    """A set of comparisons combined with AND (default) or OR.

    An empty set always matches.
    """

    model_config = ConfigDict(frozen=True)

    comparisons: list[Comparison] = Field(default_factory=list)
    logic: Logic = Logic.AND

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, list):
            return {"comparisons": data}
        if isinstance(data, dict) and "comparisons" not in data:
            return {
                "comparisons": [
                    _mapping_entry(field, condition)
                    for field, condition in data.items()
                    if field != "logic"
                ],
                "logic": data.get("logic", Logic.AND),
            }
        return data

    def __bool__(self) -> bool:
        return bool(self.comparisons)


def _mapping_entry(field: str, condition: Any) -> dict[str, Any]:
    if isinstance(condition, dict):
        return {"field": field, **condition}
    return {"field": field, "operator": Operator.EQUALS, "value": condition}


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _as_text(value: Any, field: str, operator: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ComparisonError(
        "type mismatch: expected a scalar",
        field=field,
        operator=operator,
        actual=type(value).__name__,
    )


def compare(
    value1: Any,
    value2: Any,
    operator: Union[Operator, str],
    case_sensitive: bool = True,
    field: str = "",
) -> bool:
    """Compare a context value against an expected value.

    Args:
        value1: Actual value from the machine context. None never matches.
        value2: Expected value (a regex for ``matches``).
        operator: One of equals, equals_ci, contains, matches.
        case_sensitive: False makes every operator case-insensitive.
        field: Field path, used only in error messages.

    Returns:
        True if the comparison holds.

    Raises:
        ComparisonError: Unknown operator, invalid regex, or non-scalar input.
    """
    try:
        op = Operator(operator)
    except ValueError:
        raise ComparisonError("unknown operator", field=field, operator=str(operator)) from None

    if value2 is None:
        raise ComparisonError("no expected value", field=field, operator=op.value)
    if value1 is None:
        return False

    if op is Operator.CONTAINS and isinstance(value1, (list, tuple, set, frozenset)):
        needle = _as_text(value2, field, op.value)
        items = [_as_text(item, field, op.value) for item in value1]
        if not case_sensitive:
            return needle.lower() in (item.lower() for item in items)
        return needle in items

    actual = _as_text(value1, field, op.value)
    expected = _as_text(value2, field, op.value)

    if op is Operator.MATCHES:
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            pattern = re.compile(expected, flags)
        except re.error as exc:
            raise ComparisonError(
                f"invalid regular expression ({exc})",
                field=field,
                operator=op.value,
                expected=expected,
            ) from exc
        return pattern.search(actual) is not None

    if op is Operator.EQUALS_CI or not case_sensitive:
        actual, expected = actual.casefold(), expected.casefold()

    if op is Operator.CONTAINS:
        return expected in actual
    return actual == expected


def evaluate_comparison(comparison: Comparison, context: MachineContext) -> bool:
    """Evaluate one comparison against the context."""
    actual = context.lookup(comparison.field)
    result = compare(
        actual,
        comparison.value,
        comparison.operator,
        case_sensitive=comparison.case_sensitive,
        field=comparison.field,
    )
    logger.debug(
        "%s %s %r -> %s (actual %r)",
        comparison.field, comparison.operator.value, comparison.value, result, actual,
    )
    return result


def _as_criteria(selectors: Union[Criteria, Mapping[str, Any], list, None]) -> Criteria:
    if isinstance(selectors, Criteria):
        return selectors
    return Criteria.model_validate(selectors)


def match_selectors(
    selectors: Union[Criteria, Mapping[str, Any], list, None],
    context: MachineContext,
) -> bool:
    """Decide whether a selector set matches the context.

    Every comparison is evaluated, so a broken comparison raises even when
    an earlier one already decided the outcome.

    Args:
        selectors: Criteria, or a raw mapping/list in template syntax.
        context: Machine context to test.

    Returns:
        True if matched. An empty selector set always matches.

    Raises:
        ComparisonError: If any comparison cannot be evaluated.
    """
    criteria = _as_criteria(selectors)
    if not criteria.comparisons:
        return True

    results = [evaluate_comparison(c, context) for c in criteria.comparisons]
    if criteria.logic is Logic.OR:
        return any(results)
    return all(results)


def applicable_configurations(
    configurations: Iterable["MachineConfiguration"],
    context: MachineContext,
) -> list["MachineConfiguration"]:
    """Filter machine configurations down to the ones matching the context.

    Declaration order is preserved: later entries win during merge.
    """
    applicable = []
    for config in configurations:
        if match_selectors(config.selectors, context):
            logger.debug("Machine configuration '%s' applies", config.name)
            applicable.append(config)
    return applicable
