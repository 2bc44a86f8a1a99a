"""
Exception hierarchy for the resolution engine, state store and privilege model.

Every error names the path or field that failed and, where it makes sense,
what was expected versus what was found. An operator should be able to fix
the template or machine configuration from the message alone.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class WmrError(Exception):
    """Base class for every error raised by wmr."""


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TemplateError(WmrError):
    """A template could not be loaded."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class TemplateNotFoundError(TemplateError):
    """The template file does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__("template not found", path=path)


class TemplateParseError(TemplateError):
    """The template document is not well-formed YAML/JSON."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        self.line = line
        self.column = column
        where = f" (line {line}, column {column})" if line is not None else ""
        super().__init__(f"parse error{where}: {message}", path=path)


class TemplateSchemaError(TemplateError):
    """The template parsed but does not satisfy the schema."""

    def __init__(
        self,
        missing_field: str,
        message: str = "",
        path: Optional[str] = None,
    ) -> None:
        self.missing_field = missing_field
        detail = message or "required field is missing or empty"
        super().__init__(f"schema error at '{missing_field}': {detail}", path=path)


# ---------------------------------------------------------------------------
# Selectors and conditions
# ---------------------------------------------------------------------------


class ComparisonError(WmrError):
    """A selector or condition could not be evaluated."""

    def __init__(
        self,
        message: str,
        field: str = "",
        operator: str = "",
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        self.field = field
        self.operator = operator
        self.expected = expected
        self.actual = actual
        parts = [message]
        if field:
            parts.append(f"field={field!r}")
        if operator:
            parts.append(f"operator={operator!r}")
        if expected is not None:
            parts.append(f"expected={expected!r}")
        if actual is not None:
            parts.append(f"actual={actual!r}")
        super().__init__(" ".join(parts))


# ---------------------------------------------------------------------------
# State store
# ---------------------------------------------------------------------------


class StateStoreError(WmrError):
    """A state store operation failed."""

    def __init__(self, message: str, path: str = "", name: Optional[str] = None) -> None:
        self.path = path
        self.name = name
        target = f"{path}:{name}" if name else path
        super().__init__(f"{target}: {message}" if target else message)


class NotFoundError(StateStoreError):
    """The key, value, file or directory does not exist."""

    def __init__(self, path: str, name: Optional[str] = None) -> None:
        super().__init__("not found", path=path, name=name)


class AccessDeniedError(StateStoreError):
    """The caller lacks the privilege to touch this path."""

    def __init__(self, path: str, name: Optional[str] = None, reason: str = "") -> None:
        super().__init__(f"access denied{': ' + reason if reason else ''}", path=path, name=name)


class AlreadyExistsError(StateStoreError):
    """Create was asked for something that is already there."""

    def __init__(self, path: str) -> None:
        super().__init__("already exists", path=path)


class InvalidTypeError(StateStoreError):
    """A value does not fit the declared type, or the type is unknown."""

    def __init__(
        self,
        message: str,
        path: str = "",
        name: Optional[str] = None,
        value_type: str = "",
    ) -> None:
        self.value_type = value_type
        super().__init__(f"invalid type {value_type!r}: {message}", path=path, name=name)


# ---------------------------------------------------------------------------
# Privileges
# ---------------------------------------------------------------------------


class PrivilegeError(WmrError):
    """An admin operation was requested without the privilege to run it."""

    def __init__(self, operation: str, message: str = "") -> None:
        self.operation = operation
        super().__init__(
            message or f"'{operation}' requires administrative privileges "
            "(expected: elevated session, actual: unprivileged, no fallback)"
        )


class ElevationRequiredError(PrivilegeError):
    """Elevation was needed and could not be obtained."""

    def __init__(self, operation: str, reason: str = "") -> None:
        super().__init__(
            operation,
            f"'{operation}' requires elevation: {reason or 'elevation refused'}",
        )


class PrerequisiteError(WmrError):
    """A prerequisite with on_missing=fail was not satisfied."""

    def __init__(self, name: str, expected: str, actual: str) -> None:
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"prerequisite '{name}' not met: expected {expected!r}, got {actual!r}"
        )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ValidationFailure(str, Enum):
    """Sub-kinds of resolved configuration validation failures."""

    MISSING_FIELD = "missing_field"
    BROKEN_PAIRING = "broken_pairing"
    UNRESOLVED_PLACEHOLDER = "unresolved_placeholder"


class ValidationError(WmrError):
    """A resolved configuration failed validation."""

    def __init__(
        self,
        kind: ValidationFailure,
        field: str,
        message: str,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        self.kind = kind
        self.field = field
        self.expected = expected
        self.actual = actual
        text = f"{kind.value} at '{field}': {message}"
        if expected is not None or actual is not None:
            text += f" (expected {expected!r}, actual {actual!r})"
        super().__init__(text)
