"""Template commands: list, show, validate."""

from __future__ import annotations

import json

import click
import yaml
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..errors import TemplateError
from ._common import HOME_OPTION, console, fail, runtime_for


def register_template_commands(main: click.Group) -> None:
    """Register the template command group."""

    @main.group()
    def template():
        """Templates — what to back up, independent of any machine.

        Templates are found in extra directories from config.yaml,
        then ~/.wmr/templates, then the built-in set. Earlier
        directories shadow later ones by file name.
        """

    @template.command("list")
    @HOME_OPTION
    def template_list(home: str):
        """List every template that loads.

        Examples:

            wmr template list
        """
        runtime = runtime_for(home)
        templates = runtime.templates.list_templates()
        if not templates:
            console.print("\n[dim]No templates found.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Key", style="cyan")
        table.add_column("Name")
        table.add_column("Category", style="dim")
        table.add_column("Machines", justify="right")
        table.add_column("Rules", justify="right")
        table.add_column("Source", style="dim")

        for key, tpl in templates:
            table.add_row(
                key,
                tpl.name,
                tpl.metadata.category,
                str(len(tpl.machine_specific)),
                str(len(tpl.inheritance_rules)),
                str(runtime.templates.path_of(key) or ""),
            )

        console.print(f"\n[bold]{len(templates)}[/] template(s):\n")
        console.print(table)
        console.print()

    @template.command("show")
    @click.argument("name")
    @HOME_OPTION
    @click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml",
                  help="Output format (default: yaml).")
    def template_show(name: str, home: str, fmt: str):
        """Print a template as loaded, after layout normalization.

        NAME is a template key or a path to a template file.
        """
        runtime = runtime_for(home)
        try:
            tpl = runtime.templates.open(name)
        except TemplateError as exc:
            fail(exc)

        data = tpl.model_dump(mode="json", exclude_defaults=True)
        if fmt == "json":
            click.echo(json.dumps(data, indent=2))
        else:
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))

    @template.command("validate")
    @click.argument("paths", nargs=-1, required=True)
    @HOME_OPTION
    def template_validate(paths: tuple[str, ...], home: str):
        """Parse and schema-check one or more templates.

        Exits 1 if any template is rejected.

        Examples:

            wmr template validate display.yaml

            wmr template validate ~/.wmr/templates/*.yaml
        """
        runtime = runtime_for(home)
        failed = 0
        for path in paths:
            try:
                tpl = runtime.templates.open(path)
            except TemplateError as exc:
                failed += 1
                console.print(f"[red]FAIL[/] {escape(path)}: {escape(str(exc))}")
                continue
            console.print(
                f"[green]OK[/]   {path}: [bold]{tpl.name}[/] "
                f"({len(tpl.backup.entries())} backup entries, "
                f"{len(tpl.machine_specific)} machine configs, "
                f"{len(tpl.inheritance_rules)} rules, "
                f"{len(tpl.conditional_sections)} sections)"
            )

        if failed:
            console.print(Panel(f"{failed} of {len(paths)} template(s) rejected",
                                border_style="red"))
            raise SystemExit(1)
