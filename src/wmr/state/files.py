"""
File backend — filesystem paths holding byte content.

Paths are written the way templates write them: ``%USERPROFILE%\\...``,
``$HOME/...`` or ``~/...``. Expansion uses the environment handed to the
store (normally the Machine Context's), not whatever the process has.

The filesystem keeps no type beside the bytes, so reads name the type they
want: ``binary`` (the default) returns bytes, ``string`` returns UTF-8 text.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any, Mapping, Optional

from ..errors import (
    AccessDeniedError,
    AlreadyExistsError,
    InvalidTypeError,
    NotFoundError,
    StateStoreError,
)
from .base import FilePath, StateStore

logger = logging.getLogger("wmr.state.files")

_PERCENT_VAR = re.compile(r"%([A-Za-z_][A-Za-z0-9_()]*)%")
_DOLLAR_VAR = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")

FILE_KINDS = ("file", "directory")


def expand_path(raw: str, environment: Mapping[str, str]) -> str:
    """Expand ``%VAR%``, ``$VAR``/``${VAR}`` and a leading ``~``.

    Unknown variables are left as written.
    """
    lowered = {k.lower(): v for k, v in environment.items()}

    def percent(match: re.Match) -> str:
        name = match.group(1)
        return environment.get(name, lowered.get(name.lower(), match.group(0)))

    def dollar(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        return environment.get(name, match.group(0))

    text = _PERCENT_VAR.sub(percent, raw)
    text = _DOLLAR_VAR.sub(dollar, text)
    if text.startswith("~"):
        home = environment.get("HOME") or environment.get("USERPROFILE")
        text = (home + text[1:]) if home else os.path.expanduser(text)
    return text


class FileStore(StateStore):
    """Filesystem state store.

    Args:
        root: Base directory for relative paths (defaults to the cwd).
        environment: Variables used for path expansion.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        environment: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._root = Path(root).expanduser() if root else None
        self._environment = dict(os.environ if environment is None else environment)

    @property
    def name(self) -> str:
        return "files"

    def resolve(self, path: Any) -> Path:
        """Expand a template path into a concrete filesystem path."""
        raw = path.raw if isinstance(path, FilePath) else str(path)
        text = expand_path(raw, self._environment)
        if os.sep == "/":
            text = text.replace("\\", "/")
        resolved = Path(text)
        if self._root is not None and not resolved.is_absolute():
            resolved = self._root / resolved
        return resolved

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    def exists(self, path: Any, name: Optional[str] = None) -> bool:
        target = self.resolve(path)
        if name is not None:
            target = target / name
        return target.exists()

    def get(self, path: Any, name: Optional[str] = None, value_type: Optional[str] = None) -> Any:
        target = self.resolve(path)
        if name is not None:
            target = target / name
        if not target.exists():
            raise NotFoundError(str(path), name)

        try:
            if target.is_dir():
                return {
                    child.name: self._decode(child.read_bytes(), value_type, str(path), child.name)
                    for child in sorted(target.iterdir())
                    if child.is_file()
                }
            return self._decode(target.read_bytes(), value_type, str(path), name)
        except PermissionError as exc:
            raise AccessDeniedError(str(path), name, reason=str(exc)) from exc

    def set(self, path: Any, name: Optional[str], value: Any, value_type: Optional[str] = None) -> None:
        target = self.resolve(path)
        if name is not None:
            target = target / name
        data = self._encode(value, value_type, str(path), name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except PermissionError as exc:
            raise AccessDeniedError(str(path), name, reason=str(exc)) from exc
        except IsADirectoryError:
            raise StateStoreError("is a directory; pass a name", path=str(path), name=name) from None
        logger.debug("Wrote %d bytes to %s", len(data), target)

    def create(self, path: Any, kind: Optional[str] = None) -> None:
        kind = kind or "file"
        if kind not in FILE_KINDS:
            raise InvalidTypeError("expected 'file' or 'directory'", path=str(path), value_type=kind)
        target = self.resolve(path)
        if target.exists():
            raise AlreadyExistsError(str(path))
        try:
            if kind == "directory":
                target.mkdir(parents=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.touch()
        except PermissionError as exc:
            raise AccessDeniedError(str(path), reason=str(exc)) from exc

    def remove(self, path: Any, recursive: bool = False, name: Optional[str] = None) -> None:
        target = self.resolve(path)
        if name is not None:
            target = target / name
        if not target.exists():
            raise NotFoundError(str(path), name)
        try:
            if target.is_dir():
                if recursive:
                    shutil.rmtree(target)
                elif any(target.iterdir()):
                    raise StateStoreError("directory is not empty; pass recursive=True", path=str(path))
                else:
                    target.rmdir()
            else:
                target.unlink()
        except PermissionError as exc:
            raise AccessDeniedError(str(path), name, reason=str(exc)) from exc
        logger.debug("Removed %s", target)

    # ------------------------------------------------------------------
    # Copying
    # ------------------------------------------------------------------

    def copy_out(self, path: Any, destination: Path) -> Path:
        """Copy a file or directory tree out of the store to ``destination``."""
        source = self.resolve(path)
        if not source.exists():
            raise NotFoundError(str(path))
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            if source.is_dir():
                shutil.copytree(source, destination, dirs_exist_ok=True)
            else:
                shutil.copy2(source, destination)
        except PermissionError as exc:
            raise AccessDeniedError(str(path), reason=str(exc)) from exc
        return destination

    def copy_in(self, source: Path, path: Any) -> Path:
        """Copy a file or directory tree from ``source`` into the store."""
        if not source.exists():
            raise NotFoundError(str(source))
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
            else:
                shutil.copy2(source, target)
        except PermissionError as exc:
            raise AccessDeniedError(str(path), reason=str(exc)) from exc
        return target

    @staticmethod
    def _decode(data: bytes, value_type: Optional[str], path: str, name: Optional[str]) -> Any:
        if value_type in (None, "binary"):
            return data
        if value_type == "string":
            try:
                return data.decode("utf-8")
            except UnicodeDecodeError:
                raise InvalidTypeError("file content is not UTF-8 text", path=path, name=name,
                                       value_type=value_type) from None
        raise InvalidTypeError("expected 'binary' or 'string'", path=path, name=name,
                               value_type=str(value_type))

    @staticmethod
    def _encode(value: Any, value_type: Optional[str], path: str, name: Optional[str]) -> bytes:
        if value_type in (None, "binary") and isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if value_type in (None, "string") and isinstance(value, str):
            return value.encode("utf-8")
        raise InvalidTypeError(
            f"file content must be bytes or text, got {type(value).__name__}",
            path=path,
            name=name,
            value_type=str(value_type),
        )
