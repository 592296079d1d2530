"""Plan commands - Validate plans and try out placeholder templates."""

import json
from pathlib import Path

import typer

from stepforce.api.cli.common import load_settings
from stepforce.api.cli.output_formatter import OutputFormatter, console
from stepforce.application.service import PlanLoadError, PlanRunner
from stepforce.core.domain.errors import NormalizationError


def validate_plan(
    ctx: typer.Context,
    plan_file: Path = typer.Argument(..., help="Plan file (YAML or JSON)"),
    output_json: bool = typer.Option(False, "--json", help="Print issues as JSON"),
):
    """Check a plan for unknown tools, duplicate ids and bad step references."""
    runner = PlanRunner(load_settings(ctx))

    try:
        plan = runner.load_plan(plan_file)
    except PlanLoadError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    issues = runner.validate(plan)
    if output_json:
        typer.echo(json.dumps({"valid": not issues, "issues": [issue.to_dict() for issue in issues]}, indent=2))
    elif issues:
        OutputFormatter.format_issues(issues)
    else:
        console.print(f"[green]Plan is valid[/green] ({len(plan.steps)} steps)")

    if issues:
        raise typer.Exit(1)


def resolve_template(
    ctx: typer.Context,
    template: str = typer.Argument(..., help="Text or JSON containing {{stepN...}} placeholders"),
    ledger_file: Path = typer.Option(..., "--ledger", "-l", help="Ledger snapshot or saved run (JSON/YAML)"),
):
    """Resolve placeholders against a recorded ledger.

    Examples:
        stepforce resolve "{{step1.title}}" --ledger run.json
        stepforce resolve '{"url": "{{step2.results[0].link}}"}' --ledger run.json
    """
    load_settings(ctx)

    try:
        entries = PlanRunner.load_ledger(ledger_file)
    except PlanLoadError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    try:
        value = PlanRunner.resolve_template(template, entries)
    except NormalizationError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(1)

    OutputFormatter.format_value(value)
