"""Tools command - List and inspect available tools."""

from typing import Optional

import typer

from stepforce.api.cli.common import load_settings
from stepforce.api.cli.output_formatter import OutputFormatter, console
from stepforce.application.service import PlanRunner
from stepforce.core.domain.errors import ToolNotFoundError


def list_tools(
    ctx: typer.Context,
    tool_name: Optional[str] = typer.Argument(None, help="Tool to inspect"),
):
    """List available tools, or show one tool's parameters."""
    registry = PlanRunner(load_settings(ctx)).registry

    if tool_name is None:
        OutputFormatter.format_tool_list([registry.tools[name] for name in registry.names])
        return

    try:
        tool = registry.get(tool_name)
    except ToolNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold cyan]{tool.name}[/bold cyan]")
    console.print(f"{tool.description}\n")
    console.print("[bold]Parameters:[/bold]")
    console.print_json(data=tool.parameters_schema)
