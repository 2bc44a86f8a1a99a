"""Backup and restore commands."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from ..actions import ActionReport
from ..errors import WmrError
from ._common import HOME_OPTION, console, fail, runtime_for, status_icon
from .resolve import LEVELS


def _print_report(report: ActionReport) -> None:
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Kind", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    for outcome in report.outcomes:
        table.add_row(outcome.kind, escape(outcome.name), status_icon(outcome.status), escape(outcome.detail))
    console.print(f"\n[bold]{report.action.title()}[/] of [bold]{report.template}[/] "
                  f"([cyan]{escape(str(report.directory))}[/]):\n")
    console.print(table)
    console.print()


def register_run_commands(main: click.Group) -> None:
    """Register backup and restore."""

    @main.command("backup")
    @click.argument("name")
    @click.argument("target", type=click.Path())
    @HOME_OPTION
    @click.option("--level", type=LEVELS, default=None, help="Validation level override.")
    @click.option("--skip-prereqs", is_flag=True, help="Do not run prerequisite probes.")
    def backup_cmd(name: str, target: str, home: str, level: Optional[str], skip_prereqs: bool):
        """Back up a template's entries from this machine into TARGET.

        Examples:

            wmr backup display ./backups/display

            wmr backup ~/templates/terminal.yaml /mnt/usb/terminal --level strict
        """
        from ..actions import backup_configuration
        from ..prerequisites import check_prerequisites

        runtime = runtime_for(home)
        try:
            resolved = runtime.resolve(name, validation_level=level)
            if not skip_prereqs:
                prereqs = check_prerequisites(
                    resolved, shell=runtime.config.shell, timeout=runtime.config.prerequisite_timeout,
                )
                if prereqs.skipped:
                    console.print(f"[yellow]Skipping '{resolved.name}': prerequisites not met.[/]")
                    return
            report = backup_configuration(resolved, runtime.store, Path(target))
        except WmrError as exc:
            fail(exc)

        _print_report(report)
        if not report.ok:
            raise SystemExit(1)

    @main.command("restore")
    @click.argument("name")
    @click.argument("source", type=click.Path(exists=True, file_okay=False))
    @HOME_OPTION
    @click.option("--level", type=LEVELS, default=None, help="Validation level override.")
    @click.option("--what-if", is_flag=True, help="Show what would be restored; write nothing.")
    @click.option("--elevate", is_flag=True,
                  help="Run the whole restore elevated when the template needs admin rights.")
    @click.option("--skip-prereqs", is_flag=True, help="Do not run prerequisite probes.")
    def restore_cmd(
        name: str,
        source: str,
        home: str,
        level: Optional[str],
        what_if: bool,
        elevate: bool,
        skip_prereqs: bool,
    ):
        """Restore a template's entries onto this machine from SOURCE.

        Without elevation, machine-wide writes are skipped and shown
        as DEGRADED. With --elevate they require an elevated session.

        Examples:

            wmr restore display ./backups/display --what-if

            wmr restore windows-features ./backups/features --elevate
        """
        from ..actions import restore_configuration
        from ..prerequisites import check_prerequisites

        runtime = runtime_for(home)
        try:
            template = runtime.templates.open(name)
            resolved = runtime.resolve(template, validation_level=level)
            if not skip_prereqs and not what_if:
                prereqs = check_prerequisites(
                    resolved, shell=runtime.config.shell, timeout=runtime.config.prerequisite_timeout,
                )
                if prereqs.skipped:
                    console.print(f"[yellow]Skipping '{resolved.name}': prerequisites not met.[/]")
                    return

            def run() -> ActionReport:
                return restore_configuration(
                    resolved, runtime.store, Path(source),
                    privileges=runtime.privileges, what_if=what_if,
                )

            if elevate and runtime.privileges.classify_requirements(template).requires_elevation:
                result = runtime.privileges.with_elevation(
                    run,
                    what_if=what_if,
                    no_prompt=runtime.config.no_prompt,
                    description=f"restore of '{resolved.name}'",
                )
                if result.dry_run:
                    console.print(f"[cyan]{result.report}[/]")
                report = run() if result.dry_run else result.value
            else:
                report = run()
        except WmrError as exc:
            fail(exc)

        _print_report(report)
        if not report.ok:
            raise SystemExit(1)
