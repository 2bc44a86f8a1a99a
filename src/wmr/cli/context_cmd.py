"""Machine context command: show what selectors will see."""

from __future__ import annotations

import click
from rich.panel import Panel
from rich.table import Table

from ._common import HOME_OPTION, console, runtime_for, yes_no


def register_context_commands(main: click.Group) -> None:
    """Register the context command."""

    @main.command("context")
    @HOME_OPTION
    @click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
    @click.option("--env/--no-env", "show_env", default=False,
                  help="Include environment variables (table output).")
    def context(home: str, as_json: bool, show_env: bool):
        """Show the machine context selectors are evaluated against.

        Examples:

            wmr context

            wmr context --json
        """
        runtime = runtime_for(home)
        ctx = runtime.context()

        if as_json:
            click.echo(ctx.model_dump_json(indent=2))
            return

        console.print(Panel(
            f"Machine: [bold]{ctx.machine_name}[/]\n"
            f"Host: [cyan]{ctx.hostname}[/]\n"
            f"User: {ctx.username}\n"
            f"Elevated: {yes_no(ctx.is_elevated)}",
            title="Machine Context",
            border_style="cyan",
        ))

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for name, value in ctx.hardware.model_dump().items():
            table.add_row(f"hardware.{name}", str(value))
        for name, value in ctx.software.model_dump().items():
            table.add_row(f"software.{name}", str(value))
        if show_env:
            for name in sorted(ctx.environment):
                table.add_row(f"environment.{name}", ctx.environment[name])
        console.print(table)
