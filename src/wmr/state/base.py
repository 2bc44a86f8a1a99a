"""
State store contract and path parsing.

Every backend speaks the same verbs: exists, get, set, create, remove.
A path is parsed once into a RegistryPath or a FilePath; the router picks
the backend from that parsed shape and never re-inspects the string.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Optional, Union

from ..errors import NotFoundError

# Canonical hive names and the spellings accepted for each.
HIVES = {
    "HKCU": "HKCU",
    "HKEY_CURRENT_USER": "HKCU",
    "HKLM": "HKLM",
    "HKEY_LOCAL_MACHINE": "HKLM",
    "HKCR": "HKCR",
    "HKEY_CLASSES_ROOT": "HKCR",
    "HKU": "HKU",
    "HKEY_USERS": "HKU",
    "HKCC": "HKCC",
    "HKEY_CURRENT_CONFIG": "HKCC",
}

MACHINE_WIDE_HIVES = frozenset({"HKLM"})

_REGISTRY_RE = re.compile(
    r"^(?:Registry::|Microsoft\.PowerShell\.Core\\Registry::)?"
    r"(?P<hive>HK[A-Za-z_]+?):?(?:[\\/]+(?P<rest>.*))?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RegistryPath:
    """A registry key: canonical hive plus key segments."""

    hive: str
    segments: tuple[str, ...] = ()

    @property
    def machine_wide(self) -> bool:
        """True when the key lives under the machine-wide hive."""
        return self.hive in MACHINE_WIDE_HIVES

    @property
    def key(self) -> tuple[str, ...]:
        """Case-insensitive identity of the key."""
        return (self.hive,) + tuple(s.lower() for s in self.segments)

    @property
    def parent(self) -> Optional["RegistryPath"]:
        if not self.segments:
            return None
        return RegistryPath(self.hive, self.segments[:-1])

    def child(self, name: str) -> "RegistryPath":
        return RegistryPath(self.hive, self.segments + (name,))

    def __str__(self) -> str:
        if not self.segments:
            return f"{self.hive}:\\"
        return f"{self.hive}:\\" + "\\".join(self.segments)


@dataclass(frozen=True)
class FilePath:
    """A filesystem path as written in the template (not yet expanded)."""

    raw: str

    def __str__(self) -> str:
        return self.raw


StatePath = Union[RegistryPath, FilePath]


def parse_registry_path(path: str) -> Optional[RegistryPath]:
    """Parse a registry path, or return None if it has no recognized hive."""
    match = _REGISTRY_RE.match(path.strip())
    if not match:
        return None
    hive = HIVES.get(match.group("hive").upper())
    if hive is None:
        return None
    rest = match.group("rest") or ""
    segments = tuple(s for s in re.split(r"[\\/]+", rest) if s)
    return RegistryPath(hive, segments)


def parse_state_path(path: Union[str, PurePath, RegistryPath, FilePath]) -> StatePath:
    """Route a path to its backend shape.

    A recognized hive prefix (``HKCU:\\``, ``HKEY_LOCAL_MACHINE\\``,
    ``Registry::HKLM\\``) makes a RegistryPath; anything else is a FilePath.
    """
    if isinstance(path, (RegistryPath, FilePath)):
        return path
    text = str(path)
    return parse_registry_path(text) or FilePath(text)


def normalize_path_key(path: str) -> str:
    """Case-insensitive comparison key for a template path."""
    parsed = parse_state_path(path)
    if isinstance(parsed, RegistryPath):
        return "\\".join(parsed.key)
    return re.sub(r"[\\/]+", "/", parsed.raw.strip()).rstrip("/").lower()


class StateStore(ABC):
    """Uniform get/set/test/create/remove over one kind of machine state."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for logs and reports."""

    @abstractmethod
    def exists(self, path: Any, name: Optional[str] = None) -> bool:
        """Test whether a key/file exists (or a named value under it)."""

    @abstractmethod
    def get(self, path: Any, name: Optional[str] = None, value_type: Optional[str] = None) -> Any:
        """Read one named value, or every value at ``path`` as a mapping.

        ``value_type`` tells untyped backends how to decode what they read;
        typed backends return the stored type and ignore it.

        Raises:
            NotFoundError: If the path or the named value is missing.
        """

    @abstractmethod
    def set(self, path: Any, name: Optional[str], value: Any, value_type: Optional[str] = None) -> None:
        """Write a value.

        Raises:
            AccessDeniedError: If the caller may not write here.
            InvalidTypeError: If the value does not fit ``value_type``.
        """

    @abstractmethod
    def create(self, path: Any, kind: Optional[str] = None) -> None:
        """Create a key, file or directory.

        Raises:
            AlreadyExistsError: If it is already there.
            AccessDeniedError: If the caller may not write here.
        """

    @abstractmethod
    def remove(self, path: Any, recursive: bool = False, name: Optional[str] = None) -> None:
        """Remove a key/file/directory, or only the named value under it.

        Raises:
            NotFoundError: If it does not exist.
            AccessDeniedError: If the caller may not write here.
        """

    def try_get(self, path: Any, name: Optional[str] = None) -> Optional[Any]:
        """Like get, but a missing entity is None ("no data yet")."""
        try:
            return self.get(path, name)
        except NotFoundError:
            return None
