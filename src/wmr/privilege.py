"""
Privilege Model — elevation detection, requirement classification and
admin-safe dispatch.

Two states, UNPRIVILEGED and ELEVATED. The model never changes state on
its own; only an explicit elevation request, answered by a caller-supplied
prompt strategy, can move it to ELEVATED. The core never blocks on UI:
with ``no_prompt`` (or no strategy) an unprivileged admin request fails
with ElevationRequiredError instead of waiting.

Usage:
    privileges = PrivilegeModel(prompt=ask_user)
    result = privileges.safe_admin_operation(
        lambda: store.set(r"HKLM:\\SOFTWARE\\App", "Mode", 1, "dword"),
        fallback=lambda: store.set(r"HKCU:\\Software\\App", "Mode", 1, "dword"),
    )
    if result.degraded:
        ...
"""

from __future__ import annotations

import ctypes
import logging
import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from .errors import AccessDeniedError, ElevationRequiredError, PrivilegeError
from .templates.schema import Template

logger = logging.getLogger("wmr.privilege")

PromptStrategy = Callable[[str], bool]

_FEATURE_PATTERN = re.compile(r"windows[\s_-]*features?|optional[\s_-]*features?|capabilit|\bdism\b", re.I)
_SERVICE_PATTERN = re.compile(r"service|scheduled[\s_-]*task|defender|windows[\s_-]*update|firewall", re.I)
_ADMIN_PATTERN = re.compile(r"\badmin(istrat\w*)?\b|elevat", re.I)


class PrivilegeState(str, Enum):
    """Execution privilege of the current session."""

    UNPRIVILEGED = "unprivileged"
    ELEVATED = "elevated"


class OperationType(str, Enum):
    """Privilege an operation declares it needs."""

    USER = "user"
    ADMIN = "admin"


class PrivilegeRequirements(BaseModel):
    """What a template needs in order to run fully.

    Attributes:
        requires_admin: Some entry needs administrative rights.
        requires_elevation: The run must happen in an elevated session.
        windows_features: Template toggles Windows features/capabilities.
        registry_access: Template touches the machine-wide hive.
        service_access: Template manages services, tasks or similar.
        reasons: Human-readable explanation of each finding.
    """

    requires_admin: bool = False
    requires_elevation: bool = False
    windows_features: bool = False
    registry_access: bool = False
    service_access: bool = False
    reasons: list[str] = Field(default_factory=list)


@dataclass
class OperationResult:
    """Outcome of a privilege-dispatched operation.

    Attributes:
        value: Whatever the executed callable returned.
        operation_type: Declared privilege of the operation.
        degraded: The fallback ran instead of the main operation.
        dry_run: Nothing ran (what-if).
        report: Description of what ran or would have run.
    """

    value: Any = None
    operation_type: OperationType = OperationType.USER
    degraded: bool = False
    dry_run: bool = False
    report: str = ""

    @property
    def full_success(self) -> bool:
        return not (self.degraded or self.dry_run)


def detect_elevation() -> bool:
    """Is this process running with administrative/root privilege?"""
    if sys.platform == "win32":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    geteuid = getattr(os, "geteuid", None)
    return bool(geteuid and geteuid() == 0)


class PrivilegeModel:
    """Tracks elevation and dispatches operations by declared privilege.

    Args:
        probe: Elevation detector; called once at construction.
        prompt: Strategy asked to obtain elevation. Returns True if granted.
    """

    def __init__(
        self,
        probe: Optional[Callable[[], bool]] = None,
        prompt: Optional[PromptStrategy] = None,
    ) -> None:
        self._prompt = prompt
        elevated = (probe or detect_elevation)()
        self._state = PrivilegeState.ELEVATED if elevated else PrivilegeState.UNPRIVILEGED
        logger.debug("Privilege state: %s", self._state.value)

    @property
    def state(self) -> PrivilegeState:
        return self._state

    def is_elevated(self) -> bool:
        return self._state is PrivilegeState.ELEVATED

    def request_elevation(self, reason: str) -> bool:
        """Ask the prompt strategy for elevation; move to ELEVATED on grant."""
        if self.is_elevated():
            return True
        if self._prompt is None:
            logger.info("Elevation needed for %s but no prompt strategy is configured", reason)
            return False
        granted = bool(self._prompt(reason))
        if granted:
            self._state = PrivilegeState.ELEVATED
            logger.info("Elevation granted for %s", reason)
        else:
            logger.warning("Elevation refused for %s", reason)
        return granted

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify_requirements(self, template: Template) -> PrivilegeRequirements:
        """Derive privilege needs from a template's declarations.

        Looks at the name/category/tags/requires of the metadata, at
        prerequisite names, and at every registry entry in the baseline
        and in all layered sections. Any HKLM entry implies admin.
        """
        return classify_requirements(template)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def safe_admin_operation(
        self,
        main: Callable[[], Any],
        fallback: Optional[Callable[[], Any]] = None,
        operation_type: OperationType = OperationType.ADMIN,
        description: str = "operation",
    ) -> OperationResult:
        """Run ``main`` if privilege allows, else ``fallback``, else fail.

        AccessDeniedError from ``main`` is never retried: it goes to the
        fallback (degraded) or becomes a PrivilegeError.

        Raises:
            PrivilegeError: Admin operation, not elevated, no fallback.
        """
        operation_type = OperationType(operation_type)

        if operation_type is OperationType.ADMIN and not self.is_elevated():
            if fallback is None:
                raise PrivilegeError(description)
            logger.warning("Not elevated: running fallback for %s", description)
            return OperationResult(
                value=fallback(),
                operation_type=operation_type,
                degraded=True,
                report=f"{description}: fallback (not elevated)",
            )

        try:
            value = main()
        except AccessDeniedError as exc:
            if fallback is None:
                raise PrivilegeError(description, f"{description}: {exc}") from exc
            logger.warning("Access denied for %s, running fallback: %s", description, exc)
            return OperationResult(
                value=fallback(),
                operation_type=operation_type,
                degraded=True,
                report=f"{description}: fallback ({exc})",
            )

        return OperationResult(value=value, operation_type=operation_type, report=description)

    def with_elevation(
        self,
        block: Callable[[], Any],
        what_if: bool = False,
        no_prompt: bool = False,
        description: str = "operation",
    ) -> OperationResult:
        """Run ``block`` in an elevated session.

        Raises:
            ElevationRequiredError: Not elevated and elevation not obtained.
        """
        if what_if:
            state = "elevated" if self.is_elevated() else "unprivileged, would request elevation"
            return OperationResult(
                operation_type=OperationType.ADMIN,
                dry_run=True,
                report=f"What if: would run {description} ({state})",
            )

        if not self.is_elevated():
            if no_prompt:
                raise ElevationRequiredError(description, "prompting disabled (no_prompt)")
            if not self.request_elevation(description):
                raise ElevationRequiredError(description, "elevation refused")

        return OperationResult(
            value=block(),
            operation_type=OperationType.ADMIN,
            report=description,
        )


def classify_requirements(template: Template) -> PrivilegeRequirements:
    """Module-level form of PrivilegeModel.classify_requirements."""
    reqs = PrivilegeRequirements()
    meta = template.metadata
    declared = " ".join([meta.name, meta.category, *meta.tags])

    if _FEATURE_PATTERN.search(declared):
        reqs.windows_features = True
        reqs.reasons.append(f"windows features: '{meta.name}' declares feature management")
    if _SERVICE_PATTERN.search(declared):
        reqs.service_access = True
        reqs.reasons.append(f"service access: '{meta.name}' declares service/task management")

    for requirement in meta.requires:
        if _ADMIN_PATTERN.search(requirement):
            reqs.requires_admin = True
            reqs.reasons.append(f"requires: {requirement}")
    for prereq in template.prerequisites:
        if _ADMIN_PATTERN.search(prereq.name):
            reqs.requires_admin = True
            reqs.reasons.append(f"prerequisite: {prereq.name}")

    for section in template.all_sections():
        for entry in section.registry:
            if entry.machine_wide:
                if not reqs.registry_access:
                    reqs.reasons.append(f"machine-wide registry: {entry.path}")
                reqs.registry_access = True

    if reqs.registry_access or reqs.windows_features or reqs.service_access:
        reqs.requires_admin = True
    reqs.requires_elevation = reqs.requires_admin
    return reqs
