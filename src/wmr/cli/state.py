"""State store commands: get, set, remove, exists."""

from __future__ import annotations

import json
from typing import Any, Optional

import click

from ..errors import WmrError
from ..state.registry import RegistryValueType
from ._common import HOME_OPTION, console, fail, runtime_for

TYPES = click.Choice([t.value for t in RegistryValueType], case_sensitive=False)


def _parse_value(raw: str, value_type: Optional[str]) -> Any:
    """Turn command-line text into the value shape ``value_type`` expects."""
    try:
        if value_type in ("dword", "qword"):
            return int(raw, 0)
        if value_type == "multi_string":
            return [part for part in raw.split(",") if part]
        if value_type == "binary":
            return bytes.fromhex(raw)
    except ValueError as exc:
        raise click.BadParameter(f"{raw!r} is not a valid {value_type}: {exc}") from exc
    return raw


def _printable(value: Any) -> Any:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value.hex()
    if isinstance(value, dict):
        return {k: _printable(v) for k, v in value.items()}
    return value


def register_state_commands(main: click.Group) -> None:
    """Register the state command group."""

    @main.group()
    def state():
        """State store — read and write registry keys and files.

        Paths with a hive prefix (HKCU:\\, HKLM:\\, ...) go to the
        registry backend; everything else to the filesystem.
        """

    @state.command("get")
    @click.argument("path")
    @click.argument("name", required=False)
    @HOME_OPTION
    def state_get(path: str, name: Optional[str], home: str):
        """Print a value, all values of a key, or a file's content.

        Examples:

            wmr state get "HKCU:\\Software\\App" Theme

            wmr state get ~/.gitconfig
        """
        runtime = runtime_for(home)
        try:
            value = runtime.store.get(path, name)
        except WmrError as exc:
            fail(exc)
        click.echo(json.dumps(_printable(value), indent=2) if isinstance(value, (dict, list))
                   else _printable(value))

    @state.command("exists")
    @click.argument("path")
    @click.argument("name", required=False)
    @HOME_OPTION
    def state_exists(path: str, name: Optional[str], home: str):
        """Exit 0 if PATH (and NAME) exists, 1 otherwise."""
        runtime = runtime_for(home)
        try:
            found = runtime.store.exists(path, name)
        except WmrError as exc:
            fail(exc)
        click.echo("yes" if found else "no")
        if not found:
            raise SystemExit(1)

    @state.command("set")
    @click.argument("path")
    @click.argument("name")
    @click.argument("value")
    @click.option("--type", "value_type", type=TYPES, default=None,
                  help="Value type (registry) or content type (files).")
    @HOME_OPTION
    def state_set(path: str, name: str, value: str, value_type: Optional[str], home: str):
        """Set a registry value, or write a file named NAME under PATH.

        Examples:

            wmr state set "HKCU:\\Software\\App" Theme Dark

            wmr state set "HKCU:\\Software\\App" Size 12 --type dword
        """
        runtime = runtime_for(home)
        parsed = _parse_value(value, value_type)
        try:
            runtime.store.set(path, name, parsed, value_type)
        except WmrError as exc:
            fail(exc)
        console.print(f"[green]Set[/] {path} {name}")

    @state.command("remove")
    @click.argument("path")
    @click.option("--name", default=None, help="Remove one value instead of the key.")
    @click.option("--recursive", "-r", is_flag=True, help="Remove subkeys / directory contents.")
    @HOME_OPTION
    def state_remove(path: str, name: Optional[str], recursive: bool, home: str):
        """Remove a key, a value, a file or a directory.

        Examples:

            wmr state remove "HKCU:\\Software\\App" --recursive
        """
        runtime = runtime_for(home)
        try:
            runtime.store.remove(path, recursive=recursive, name=name)
        except WmrError as exc:
            fail(exc)
        console.print(f"[green]Removed[/] {path}{' ' + name if name else ''}")
