"""Stepforce CLI entry point."""

import typer
from rich.console import Console

from stepforce.api.cli.commands import plans, run, tools

app = typer.Typer(
    name="stepforce",
    help="Stepforce - execute tool-calling plans with placeholders and approvals",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("run")(run.run_plan)
app.command("validate")(plans.validate_plan)
app.command("resolve")(plans.resolve_template)
app.command("tools")(tools.list_tools)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Stepforce CLI."""
    ctx.obj = {"verbose": verbose}


@app.command()
def version():
    """Show Stepforce version."""
    from stepforce import __version__

    console.print(f"[bold blue]Stepforce[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
