"""
Registry backend — hierarchical keys holding strongly typed named values.

RegistryStore keeps the hive tree in memory and, when given a file,
persists it as JSON after every write. It is the backend used off Windows
and by every test. WindowsRegistryStore talks to the real registry
through ``winreg`` and is only importable on Windows.

Keys and value names are case-insensitive, like the Windows registry;
the spelling used at creation time is kept for display.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from ..errors import (
    AccessDeniedError,
    AlreadyExistsError,
    InvalidTypeError,
    NotFoundError,
    StateStoreError,
)
from .base import RegistryPath, StateStore, parse_registry_path

if TYPE_CHECKING:
    from ..privilege import PrivilegeModel

logger = logging.getLogger("wmr.state.registry")

DWORD_MAX = 2**32 - 1
QWORD_MAX = 2**64 - 1


class RegistryValueType(str, Enum):
    """Registry value types."""

    STRING = "string"
    EXPAND_STRING = "expand_string"
    BINARY = "binary"
    DWORD = "dword"
    MULTI_STRING = "multi_string"
    QWORD = "qword"

    @classmethod
    def _missing_(cls, value: object) -> "RegistryValueType | None":
        if not isinstance(value, str):
            return None
        key = value.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == key:
                return member
        return _TYPE_ALIASES.get(key)


_TYPE_ALIASES = {
    "reg_sz": RegistryValueType.STRING,
    "sz": RegistryValueType.STRING,
    "reg_expand_sz": RegistryValueType.EXPAND_STRING,
    "expandstring": RegistryValueType.EXPAND_STRING,
    "reg_binary": RegistryValueType.BINARY,
    "reg_dword": RegistryValueType.DWORD,
    "reg_multi_sz": RegistryValueType.MULTI_STRING,
    "multistring": RegistryValueType.MULTI_STRING,
    "reg_qword": RegistryValueType.QWORD,
}


@dataclass(frozen=True)
class RegistryValue:
    """A named value's data together with its type."""

    data: Any
    value_type: RegistryValueType

    def to_json(self) -> dict[str, Any]:
        data = self.data.hex() if self.value_type is RegistryValueType.BINARY else self.data
        return {"type": self.value_type.value, "data": data}

    def detached(self) -> "RegistryValue":
        """A copy whose data is not shared with the store."""
        if isinstance(self.data, list):
            return RegistryValue(list(self.data), self.value_type)
        return self

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> "RegistryValue":
        value_type = parse_value_type(raw.get("type", "string"))
        data = raw.get("data")
        if value_type is RegistryValueType.BINARY and isinstance(data, str):
            data = bytes.fromhex(data)
        return cls(coerce_value(data, value_type), value_type)


def parse_value_type(value_type: Any, path: str = "", name: Optional[str] = None) -> RegistryValueType:
    """Parse a value type name, raising InvalidTypeError for unknown ones."""
    try:
        return RegistryValueType(value_type)
    except ValueError:
        raise InvalidTypeError("unknown registry value type", path=path, name=name,
                               value_type=str(value_type)) from None


def coerce_value(
    value: Any,
    value_type: RegistryValueType,
    path: str = "",
    name: Optional[str] = None,
) -> Any:
    """Check that ``value`` fits ``value_type`` and return it in canonical form.

    Raises:
        InvalidTypeError: If the value does not fit.
    """

    def bad(message: str) -> InvalidTypeError:
        return InvalidTypeError(message, path=path, name=name, value_type=value_type.value)

    if value_type in (RegistryValueType.STRING, RegistryValueType.EXPAND_STRING):
        if not isinstance(value, str):
            raise bad(f"expected text, got {type(value).__name__}")
        return value

    if value_type is RegistryValueType.BINARY:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, list) and all(isinstance(b, int) and 0 <= b <= 255 for b in value):
            return bytes(value)
        raise bad(f"expected bytes, got {type(value).__name__}")

    if value_type is RegistryValueType.MULTI_STRING:
        if isinstance(value, (list, tuple)) and all(isinstance(s, str) for s in value):
            return list(value)
        raise bad("expected a list of strings")

    limit = DWORD_MAX if value_type is RegistryValueType.DWORD else QWORD_MAX
    if isinstance(value, bool) or not isinstance(value, int):
        raise bad(f"expected an integer, got {type(value).__name__}")
    if not 0 <= value <= limit:
        raise bad(f"{value} out of range 0..{limit}")
    return value


@dataclass
class _Key:
    name: str
    values: dict[str, tuple[str, RegistryValue]] = field(default_factory=dict)
    subkeys: dict[str, "_Key"] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "values": {n: v.to_json() for n, v in self.values.values()},
            "subkeys": {k.name: k.to_json() for k in self.subkeys.values()},
        }

    @classmethod
    def from_json(cls, name: str, raw: dict[str, Any]) -> "_Key":
        key = cls(name)
        for value_name, value in raw.get("values", {}).items():
            key.values[value_name.lower()] = (value_name, RegistryValue.from_json(value))
        for sub_name, sub in raw.get("subkeys", {}).items():
            key.subkeys[sub_name.lower()] = cls.from_json(sub_name, sub)
        return key


def _as_registry_path(path: Any) -> RegistryPath:
    if isinstance(path, RegistryPath):
        return path
    parsed = parse_registry_path(str(path))
    if parsed is None:
        raise StateStoreError("not a registry path", path=str(path))
    return parsed


class _RegistryAccess:
    """Write gate shared by both registry backends."""

    _privileges: Optional["PrivilegeModel"]

    def _check_write(self, path: RegistryPath, name: Optional[str] = None) -> None:
        if path.machine_wide and self._privileges is not None and not self._privileges.is_elevated():
            raise AccessDeniedError(str(path), name, reason=f"writing {path.hive} needs elevation")


class RegistryStore(_RegistryAccess, StateStore):
    """In-memory registry tree, optionally persisted to a JSON file.

    Args:
        persist_path: JSON file to load from and save to after each write.
        privileges: When given, writes under HKLM require an elevated session.
    """

    def __init__(
        self,
        persist_path: Optional[Path] = None,
        privileges: Optional["PrivilegeModel"] = None,
    ) -> None:
        self._persist_path = Path(persist_path).expanduser() if persist_path else None
        self._privileges = privileges
        self._hives: dict[str, _Key] = {}
        if self._persist_path is not None and self._persist_path.exists():
            self._load()

    @property
    def name(self) -> str:
        return "registry"

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    def exists(self, path: Any, name: Optional[str] = None) -> bool:
        key = self._find(_as_registry_path(path))
        if key is None:
            return False
        return name is None or name.lower() in key.values

    def get(self, path: Any, name: Optional[str] = None, value_type: Optional[str] = None) -> Any:
        if name is None:
            return {n: v.data for n, v in self.values(path).items()}
        return self.get_value(path, name).data

    def get_value(self, path: Any, name: str) -> RegistryValue:
        """Read one value together with its type."""
        reg_path = _as_registry_path(path)
        key = self._require(reg_path)
        try:
            return key.values[name.lower()][1].detached()
        except KeyError:
            raise NotFoundError(str(reg_path), name) from None

    def values(self, path: Any) -> dict[str, RegistryValue]:
        """Every named value at a key, in insertion order."""
        key = self._require(_as_registry_path(path))
        return {n: v.detached() for n, v in key.values.values()}

    def subkeys(self, path: Any) -> list[str]:
        """Names of the direct subkeys of a key."""
        key = self._require(_as_registry_path(path))
        return [k.name for k in key.subkeys.values()]

    def set(self, path: Any, name: Optional[str], value: Any, value_type: Optional[str] = None) -> None:
        reg_path = _as_registry_path(path)
        value_name = name or ""
        vtype = parse_value_type(value_type or RegistryValueType.STRING, str(reg_path), value_name)
        data = coerce_value(value, vtype, str(reg_path), value_name)
        self._check_write(reg_path, value_name)

        key = self._ensure(reg_path)
        key.values[value_name.lower()] = (value_name, RegistryValue(data, vtype))
        logger.debug("Set %s:%s (%s)", reg_path, value_name, vtype.value)
        self._save()

    def create(self, path: Any, kind: Optional[str] = None) -> None:
        reg_path = _as_registry_path(path)
        if kind not in (None, "key"):
            raise InvalidTypeError("registry paths can only create keys", path=str(reg_path),
                                   value_type=str(kind))
        if self._find(reg_path) is not None:
            raise AlreadyExistsError(str(reg_path))
        self._check_write(reg_path)
        self._ensure(reg_path)
        logger.debug("Created key %s", reg_path)
        self._save()

    def remove(self, path: Any, recursive: bool = False, name: Optional[str] = None) -> None:
        reg_path = _as_registry_path(path)
        key = self._require(reg_path)

        if name is not None:
            if name.lower() not in key.values:
                raise NotFoundError(str(reg_path), name)
            self._check_write(reg_path, name)
            del key.values[name.lower()]
            self._save()
            return

        parent_path = reg_path.parent
        if parent_path is None:
            raise StateStoreError("cannot remove a hive root", path=str(reg_path))
        if key.subkeys and not recursive:
            raise StateStoreError("key has subkeys; pass recursive=True", path=str(reg_path))
        self._check_write(reg_path)

        parent = self._require(parent_path)
        del parent.subkeys[reg_path.segments[-1].lower()]
        logger.debug("Removed key %s", reg_path)
        self._save()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _find(self, path: RegistryPath) -> Optional[_Key]:
        key = self._hives.get(path.hive)
        if key is None:
            return _Key(path.hive) if not path.segments else None
        for segment in path.segments:
            key = key.subkeys.get(segment.lower())
            if key is None:
                return None
        return key

    def _require(self, path: RegistryPath) -> _Key:
        key = self._find(path)
        if key is None:
            raise NotFoundError(str(path))
        return key

    def _ensure(self, path: RegistryPath) -> _Key:
        key = self._hives.setdefault(path.hive, _Key(path.hive))
        for segment in path.segments:
            key = key.subkeys.setdefault(segment.lower(), _Key(segment))
        return key

    def _load(self) -> None:
        assert self._persist_path is not None
        try:
            raw = json.loads(self._persist_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StateStoreError(f"cannot load registry file ({exc})", path=str(self._persist_path)) from exc
        self._hives = {hive: _Key.from_json(hive, body) for hive, body in raw.items()}

    def _save(self) -> None:
        if self._persist_path is None:
            return
        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        data = {hive: key.to_json() for hive, key in self._hives.items()}
        self._persist_path.write_text(json.dumps(data, indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# Native Windows registry
# ---------------------------------------------------------------------------


class WindowsRegistryStore(_RegistryAccess, StateStore):
    """The real registry via ``winreg``. Windows only."""

    def __init__(self, privileges: Optional["PrivilegeModel"] = None) -> None:
        if sys.platform != "win32":
            raise StateStoreError("the native registry is only available on Windows")
        import winreg

        self._winreg = winreg
        self._privileges = privileges
        self._roots = {
            "HKCU": winreg.HKEY_CURRENT_USER,
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
            "HKCR": winreg.HKEY_CLASSES_ROOT,
            "HKU": winreg.HKEY_USERS,
            "HKCC": winreg.HKEY_CURRENT_CONFIG,
        }
        self._types = {
            RegistryValueType.STRING: winreg.REG_SZ,
            RegistryValueType.EXPAND_STRING: winreg.REG_EXPAND_SZ,
            RegistryValueType.BINARY: winreg.REG_BINARY,
            RegistryValueType.DWORD: winreg.REG_DWORD,
            RegistryValueType.MULTI_STRING: winreg.REG_MULTI_SZ,
            RegistryValueType.QWORD: winreg.REG_QWORD,
        }
        self._reverse_types = {v: k for k, v in self._types.items()}

    @property
    def name(self) -> str:
        return "winreg"

    def _open(self, path: RegistryPath, write: bool = False):
        access = self._winreg.KEY_ALL_ACCESS if write else self._winreg.KEY_READ
        try:
            return self._winreg.OpenKey(self._roots[path.hive], "\\".join(path.segments), 0, access)
        except FileNotFoundError:
            raise NotFoundError(str(path)) from None
        except PermissionError as exc:
            raise AccessDeniedError(str(path), reason=str(exc)) from exc

    def exists(self, path: Any, name: Optional[str] = None) -> bool:
        try:
            if name is None:
                self._open(_as_registry_path(path)).Close()
            else:
                self.get_value(path, name)
        except NotFoundError:
            return False
        return True

    def get(self, path: Any, name: Optional[str] = None, value_type: Optional[str] = None) -> Any:
        if name is None:
            return {n: v.data for n, v in self.values(path).items()}
        return self.get_value(path, name).data

    def get_value(self, path: Any, name: str) -> RegistryValue:
        reg_path = _as_registry_path(path)
        with self._open(reg_path) as handle:
            try:
                data, raw_type = self._winreg.QueryValueEx(handle, name)
            except FileNotFoundError:
                raise NotFoundError(str(reg_path), name) from None
        return RegistryValue(data, self._reverse_types.get(raw_type, RegistryValueType.BINARY))

    def values(self, path: Any) -> dict[str, RegistryValue]:
        reg_path = _as_registry_path(path)
        result: dict[str, RegistryValue] = {}
        with self._open(reg_path) as handle:
            index = 0
            while True:
                try:
                    name, data, raw_type = self._winreg.EnumValue(handle, index)
                except OSError:
                    break
                result[name] = RegistryValue(data, self._reverse_types.get(raw_type, RegistryValueType.BINARY))
                index += 1
        return result

    def subkeys(self, path: Any) -> list[str]:
        reg_path = _as_registry_path(path)
        names = []
        with self._open(reg_path) as handle:
            index = 0
            while True:
                try:
                    names.append(self._winreg.EnumKey(handle, index))
                except OSError:
                    break
                index += 1
        return names

    def set(self, path: Any, name: Optional[str], value: Any, value_type: Optional[str] = None) -> None:
        reg_path = _as_registry_path(path)
        vtype = parse_value_type(value_type or RegistryValueType.STRING, str(reg_path), name)
        data = coerce_value(value, vtype, str(reg_path), name)
        self._check_write(reg_path, name)
        try:
            with self._winreg.CreateKeyEx(self._roots[reg_path.hive], "\\".join(reg_path.segments), 0,
                                          self._winreg.KEY_SET_VALUE) as handle:
                self._winreg.SetValueEx(handle, name or "", 0, self._types[vtype], data)
        except PermissionError as exc:
            raise AccessDeniedError(str(reg_path), name, reason=str(exc)) from exc

    def create(self, path: Any, kind: Optional[str] = None) -> None:
        reg_path = _as_registry_path(path)
        if self.exists(reg_path):
            raise AlreadyExistsError(str(reg_path))
        self._check_write(reg_path)
        try:
            self._winreg.CreateKey(self._roots[reg_path.hive], "\\".join(reg_path.segments)).Close()
        except PermissionError as exc:
            raise AccessDeniedError(str(reg_path), reason=str(exc)) from exc

    def remove(self, path: Any, recursive: bool = False, name: Optional[str] = None) -> None:
        reg_path = _as_registry_path(path)
        self._check_write(reg_path, name)
        if name is not None:
            with self._open(reg_path, write=True) as handle:
                try:
                    self._winreg.DeleteValue(handle, name)
                except FileNotFoundError:
                    raise NotFoundError(str(reg_path), name) from None
            return

        children = self.subkeys(reg_path)
        if children and not recursive:
            raise StateStoreError("key has subkeys; pass recursive=True", path=str(reg_path))
        for child in children:
            self.remove(reg_path.child(child), recursive=True)
        try:
            self._winreg.DeleteKey(self._roots[reg_path.hive], "\\".join(reg_path.segments))
        except FileNotFoundError:
            raise NotFoundError(str(reg_path)) from None
        except PermissionError as exc:
            raise AccessDeniedError(str(reg_path), reason=str(exc)) from exc
