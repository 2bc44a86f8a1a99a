"""
State Store — uniform access to registry-like and file-like machine state.

Backends: an emulated (optionally JSON-persisted) registry, the native
Windows registry, and the filesystem. The router picks one per path.
"""

from .base import FilePath, RegistryPath, StateStore, parse_state_path
from .files import FileStore
from .registry import RegistryStore, RegistryValue, RegistryValueType, WindowsRegistryStore
from .router import StateStoreRouter, open_state_store

__all__ = [
    "FilePath",
    "FileStore",
    "RegistryPath",
    "RegistryStore",
    "RegistryValue",
    "RegistryValueType",
    "StateStore",
    "StateStoreRouter",
    "WindowsRegistryStore",
    "open_state_store",
    "parse_state_path",
]
