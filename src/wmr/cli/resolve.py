"""Resolution commands: resolve, privileges, prereqs."""

from __future__ import annotations

import json
from typing import Optional

import click
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..errors import WmrError
from ._common import HOME_OPTION, console, fail, runtime_for, yes_no

LEVELS = click.Choice(["minimal", "moderate", "strict"], case_sensitive=False)


def register_resolve_commands(main: click.Group) -> None:
    """Register resolve, privileges and prereqs."""

    @main.command("resolve")
    @click.argument("name")
    @HOME_OPTION
    @click.option("--level", type=LEVELS, default=None, help="Validation level override.")
    @click.option("--machine-name", default=None, help="Resolve as this machine name.")
    @click.option("--hostname", default=None, help="Resolve as this host name.")
    @click.option("--json", "as_json", is_flag=True, help="Output the resolved configuration as JSON.")
    def resolve_cmd(
        name: str,
        home: str,
        level: Optional[str],
        machine_name: Optional[str],
        hostname: Optional[str],
        as_json: bool,
    ):
        """Resolve a template for this machine (or an assumed identity).

        Applies matching machine configurations, inheritance rules and
        conditional sections, then validates the result.

        Examples:

            wmr resolve display

            wmr resolve display --hostname LAPTOP --level strict --json
        """
        runtime = runtime_for(home)
        try:
            ctx = runtime.context(machine_name=machine_name, hostname=hostname)
            resolved = runtime.resolve(name, validation_level=level, context=ctx)
        except WmrError as exc:
            fail(exc)

        if as_json:
            click.echo(resolved.model_dump_json(indent=2, exclude_defaults=True))
            return

        console.print(Panel(
            f"Template: [bold]{resolved.name}[/]\n"
            f"Machine: {resolved.machine_name} ({resolved.hostname})\n"
            f"Validation: {resolved.validation_level.value}\n"
            f"Machine configs: {', '.join(resolved.applied_configurations) or '[dim]none[/]'}\n"
            f"Rules: {', '.join(resolved.applied_rules) or '[dim]none[/]'}\n"
            f"Sections: {', '.join(resolved.applied_sections) or '[dim]none[/]'}",
            title="Resolved Configuration",
            border_style="green",
        ))

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Side", style="dim")
        table.add_column("Kind")
        table.add_column("Name", style="cyan")
        table.add_column("Target")
        for side, section in (("backup", resolved.backup), ("restore", resolved.restore)):
            for kind, entry in section.entries():
                target = getattr(entry, "path", None) or getattr(entry, "id", None) or ""
                key_name = getattr(entry, "key_name", None)
                if key_name:
                    target = f"{target}:{key_name}"
                table.add_row(side, kind, escape(entry.logical_name), escape(str(target)))
        console.print(table)

        for warning in resolved.warnings:
            console.print(f"[yellow]warning:[/] {escape(str(warning))}")

    @main.command("privileges")
    @click.argument("name")
    @HOME_OPTION
    def privileges_cmd(name: str, home: str):
        """Show what privileges a template needs to run fully.

        Examples:

            wmr privileges windows-features
        """
        runtime = runtime_for(home)
        try:
            tpl = runtime.templates.open(name)
        except WmrError as exc:
            fail(exc)

        reqs = runtime.privileges.classify_requirements(tpl)
        console.print(Panel(
            f"Requires admin: {yes_no(reqs.requires_admin)}\n"
            f"Requires elevation: {yes_no(reqs.requires_elevation)}\n"
            f"Windows features: {yes_no(reqs.windows_features)}\n"
            f"Machine-wide registry: {yes_no(reqs.registry_access)}\n"
            f"Services / tasks: {yes_no(reqs.service_access)}\n"
            f"Session elevated: {yes_no(runtime.privileges.is_elevated())}",
            title=f"Privileges: {tpl.name}",
            border_style="yellow" if reqs.requires_admin else "green",
        ))
        for reason in reqs.reasons:
            console.print(f"  [dim]-[/] {escape(reason)}")

    @main.command("prereqs")
    @click.argument("name")
    @HOME_OPTION
    @click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
    def prereqs_cmd(name: str, home: str, as_json: bool):
        """Run a template's prerequisite probes.

        Exits 1 when a probe with on_missing=fail is not met.

        Examples:

            wmr prereqs display
        """
        from ..prerequisites import check_prerequisites

        runtime = runtime_for(home)
        try:
            tpl = runtime.templates.open(name)
            report = check_prerequisites(
                tpl,
                shell=runtime.config.shell,
                timeout=runtime.config.prerequisite_timeout,
            )
        except WmrError as exc:
            fail(exc)

        if as_json:
            click.echo(json.dumps({
                "template": report.template,
                "all_met": report.all_met,
                "skipped": report.skipped,
                "results": [
                    {"name": r.name, "status": r.status.value, "on_missing": r.on_missing.value,
                     "expected": r.expected, "actual": r.actual, "detail": r.detail}
                    for r in report.results
                ],
            }, indent=2))
            return

        if not report.results:
            console.print("\n[dim]No prerequisites declared.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Prerequisite", style="cyan")
        table.add_column("Status")
        table.add_column("On missing", style="dim")
        table.add_column("Detail")
        for r in report.results:
            status = "[green]MET[/]" if r.met else "[yellow]MISSING[/]"
            table.add_row(r.name, status, r.on_missing.value, r.detail or r.actual)
        console.print(table)
        if report.skipped:
            console.print(f"[yellow]Template '{report.template}' would be skipped.[/]")
