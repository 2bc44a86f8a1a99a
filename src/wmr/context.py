"""
Machine Context — a read-only snapshot of the machine we are running on.

Selectors, inheritance rules and conditional sections are all evaluated
against this snapshot, never against the live machine, so a resolution
can be replayed on another box by handing it the same context.

Usage:
    ctx = current_context()
    ctx.lookup("environment.USERPROFILE")
    ctx.lookup("hardware.manufacturer")
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import socket
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ComparisonError

if TYPE_CHECKING:
    from .privilege import PrivilegeModel

logger = logging.getLogger("wmr.context")

_DMI_DIR = Path("/sys/class/dmi/id")


class HardwareInfo(BaseModel):
    """Hardware identity of the machine."""

    model_config = ConfigDict(frozen=True)

    manufacturer: str = ""
    model: str = ""
    processor: str = ""
    memory: str = ""


class SoftwareInfo(BaseModel):
    """Operating system identity of the machine."""

    model_config = ConfigDict(frozen=True)

    os_family: str = ""
    os_version: str = ""
    architecture: str = ""


class MachineContext(BaseModel):
    """Snapshot of machine identity, environment, hardware and software.

    Attributes:
        machine_name: Logical machine name (COMPUTERNAME on Windows).
        hostname: Network host name.
        username: Account running the engine.
        is_elevated: Whether the snapshot was taken in an elevated session.
        environment: Environment variables at snapshot time.
        hardware: Manufacturer, model, processor and memory descriptors.
        software: OS family, version and architecture.
    """

    model_config = ConfigDict(frozen=True)

    machine_name: str = ""
    hostname: str = ""
    username: str = ""
    is_elevated: bool = False
    environment: dict[str, str] = Field(default_factory=dict)
    hardware: HardwareInfo = Field(default_factory=HardwareInfo)
    software: SoftwareInfo = Field(default_factory=SoftwareInfo)

    def lookup(self, field_path: str) -> Any:
        """Resolve a dotted field path against this context.

        Args:
            field_path: e.g. ``hostname``, ``environment.PATH``, ``hardware.model``.

        Returns:
            The field value, or None for an unset environment variable.

        Raises:
            ComparisonError: If the path does not name a context field.
        """
        head, _, rest = field_path.partition(".")

        if head == "environment":
            if not rest:
                raise ComparisonError("environment selector needs a variable name", field=field_path)
            return self._env(rest)

        if head in ("hardware", "software"):
            section = getattr(self, head)
            if not rest or rest not in type(section).model_fields:
                raise ComparisonError("unknown context field", field=field_path)
            return getattr(section, rest)

        if rest or head not in _SCALAR_FIELDS:
            raise ComparisonError("unknown context field", field=field_path)
        return getattr(self, head)

    def _env(self, name: str) -> Optional[str]:
        if name in self.environment:
            return self.environment[name]
        # Windows environment names are case-insensitive.
        wanted = name.lower()
        for key in sorted(self.environment):
            if key.lower() == wanted:
                return self.environment[key]
        return None


_SCALAR_FIELDS = ("machine_name", "hostname", "username", "is_elevated")


def _read_dmi(name: str) -> str:
    try:
        return (_DMI_DIR / name).read_text(encoding="utf-8").strip()
    except OSError:
        return ""


def _total_memory() -> str:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return ""
    return str(pages * page_size)


def _detect_hardware(environ: Mapping[str, str]) -> HardwareInfo:
    return HardwareInfo(
        manufacturer=_read_dmi("sys_vendor"),
        model=_read_dmi("product_name"),
        processor=environ.get("PROCESSOR_IDENTIFIER") or platform.processor(),
        memory=_total_memory(),
    )


def _detect_software() -> SoftwareInfo:
    return SoftwareInfo(
        os_family=platform.system(),
        os_version=platform.release(),
        architecture=platform.machine(),
    )


def _current_user(environ: Mapping[str, str]) -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return environ.get("USERNAME", "")


def current_context(
    machine_name: Optional[str] = None,
    hostname: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    privileges: Optional["PrivilegeModel"] = None,
) -> MachineContext:
    """Snapshot the executing machine.

    Reads only; safe to call repeatedly. Identity can be injected so that
    tests and replays are deterministic.

    Args:
        machine_name: Override for the machine name.
        hostname: Override for the host name.
        environ: Environment to snapshot (defaults to ``os.environ``).
        privileges: Privilege model used to fill ``is_elevated``.

    Returns:
        A frozen MachineContext.
    """
    env = dict(os.environ if environ is None else environ)

    if privileges is None:
        from .privilege import detect_elevation

        elevated = detect_elevation()
    else:
        elevated = privileges.is_elevated()

    ctx = MachineContext(
        machine_name=machine_name or env.get("COMPUTERNAME") or platform.node(),
        hostname=hostname or socket.gethostname(),
        username=_current_user(env),
        is_elevated=elevated,
        environment=env,
        hardware=_detect_hardware(env),
        software=_detect_software(),
    )
    logger.debug("Machine context: %s (%s)", ctx.machine_name, ctx.hostname)
    return ctx
