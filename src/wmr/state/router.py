"""
Backend routing — one StateStore facade over the registry and file backends.

The path is parsed once per call; the parsed shape (RegistryPath or
FilePath) decides which backend receives it.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import RegistryPath, StatePath, StateStore, parse_state_path
from .files import FileStore
from .registry import RegistryStore, WindowsRegistryStore

if TYPE_CHECKING:
    from ..config import EngineConfig
    from ..privilege import PrivilegeModel

logger = logging.getLogger("wmr.state.router")


class StateStoreRouter(StateStore):
    """Dispatches each verb to the registry or file backend by path shape.

    Args:
        registry: Backend for paths with a recognized hive prefix.
        files: Backend for everything else.
    """

    def __init__(self, registry: StateStore, files: StateStore) -> None:
        self.registry = registry
        self.files = files

    @property
    def name(self) -> str:
        return f"{self.registry.name}+{self.files.name}"

    def backend_for(self, path: Any) -> tuple[StateStore, StatePath]:
        """Parse ``path`` and return the backend that owns it."""
        parsed = parse_state_path(path)
        if isinstance(parsed, RegistryPath):
            return self.registry, parsed
        return self.files, parsed

    def exists(self, path: Any, name: Optional[str] = None) -> bool:
        backend, parsed = self.backend_for(path)
        return backend.exists(parsed, name)

    def get(self, path: Any, name: Optional[str] = None, value_type: Optional[str] = None) -> Any:
        backend, parsed = self.backend_for(path)
        return backend.get(parsed, name, value_type)

    def set(self, path: Any, name: Optional[str], value: Any, value_type: Optional[str] = None) -> None:
        backend, parsed = self.backend_for(path)
        backend.set(parsed, name, value, value_type)

    def create(self, path: Any, kind: Optional[str] = None) -> None:
        backend, parsed = self.backend_for(path)
        backend.create(parsed, kind)

    def remove(self, path: Any, recursive: bool = False, name: Optional[str] = None) -> None:
        backend, parsed = self.backend_for(path)
        backend.remove(parsed, recursive=recursive, name=name)


def open_state_store(
    config: Optional["EngineConfig"] = None,
    privileges: Optional["PrivilegeModel"] = None,
    environment: Optional[Mapping[str, str]] = None,
) -> StateStoreRouter:
    """Build the default router for this machine.

    On Windows without a configured ``registry_file`` the native registry
    is used; otherwise the JSON-backed emulation.
    """
    registry_file: Optional[Path] = config.registry_file if config else None
    file_root: Optional[Path] = config.file_root if config else None

    registry: StateStore
    if sys.platform == "win32" and registry_file is None:
        registry = WindowsRegistryStore(privileges=privileges)
    else:
        registry = RegistryStore(persist_path=registry_file, privileges=privileges)

    files = FileStore(root=file_root, environment=environment)
    logger.debug("State store: %s + %s", registry.name, files.name)
    return StateStoreRouter(registry, files)
