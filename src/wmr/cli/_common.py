"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the runtime factory, error
reporting and the status formatting used across every command group.
"""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape

from .. import WMR_HOME
from ..actions import EntryStatus
from ..errors import WmrError
from ..runtime import EngineRuntime, get_runtime

console = Console()

HOME_OPTION = click.option(
    "--home", default=WMR_HOME, type=click.Path(), help="WMR home directory.",
)


def confirm_elevation(reason: str) -> bool:
    """Interactive elevation prompt used when prompting is enabled."""
    return click.confirm(f"Elevation is needed for {reason}. Continue as administrator?", default=False)


def runtime_for(home: str) -> EngineRuntime:
    return get_runtime(Path(home).expanduser(), prompt=confirm_elevation)


def fail(exc: WmrError) -> NoReturn:
    """Print an engine error and exit 1."""
    console.print(f"[red]{escape(str(exc))}[/]")
    raise SystemExit(1)


def status_icon(status: EntryStatus) -> str:
    """Map entry status to a Rich-formatted indicator."""
    return {
        EntryStatus.DONE: "[bold green]DONE[/]",
        EntryStatus.MISSING: "[bold yellow]MISSING[/]",
        EntryStatus.DEGRADED: "[bold yellow]DEGRADED[/]",
        EntryStatus.WOULD_RUN: "[cyan]WOULD RUN[/]",
        EntryStatus.ERROR: "[bold red]ERROR[/]",
    }.get(status, "[dim]UNKNOWN[/]")


def yes_no(flag: bool) -> str:
    return "[green]yes[/]" if flag else "[dim]no[/]"
