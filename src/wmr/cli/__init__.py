"""
WMR CLI — machine-aware configuration backup and restore.

This package organizes the CLI into modular command groups.
Each group lives in its own module; the main Click group is
defined here and all subcommands are registered via register
functions.

Entry point: wmr.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="wmr")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def main(verbose: bool):
    """WMR — declarative, machine-aware configuration backup.

    Describe it once. Resolve it per machine. Restore it anywhere.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .template import register_template_commands
from .context_cmd import register_context_commands
from .resolve import register_resolve_commands
from .run import register_run_commands
from .state import register_state_commands

register_template_commands(main)
register_context_commands(main)
register_resolve_commands(main)
register_run_commands(main)
register_state_commands(main)
