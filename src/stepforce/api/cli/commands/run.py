"""Run command - Execute plans."""

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional

import typer

from stepforce.api.cli.approval import ConsoleApprovalHandler
from stepforce.api.cli.common import load_settings
from stepforce.api.cli.output_formatter import OutputFormatter, console
from stepforce.application.service import PlanLoadError, PlanRunner
from stepforce.core.domain.models import Plan, PlanRun


async def _execute(runner: PlanRunner, plan: Plan, progress_callback) -> PlanRun:
    loop = asyncio.get_running_loop()
    handles_sigint = True
    try:
        loop.add_signal_handler(signal.SIGINT, runner.cancel, "interrupted")
    except (NotImplementedError, RuntimeError):
        # Signal handlers are unavailable on some platforms and off the main thread
        handles_sigint = False

    try:
        return await runner.run_plan(plan, progress_callback=progress_callback)
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)


def run_plan(
    ctx: typer.Context,
    plan_file: Path = typer.Argument(..., help="Plan file (YAML or JSON)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file (YAML)"),
    policy: Optional[str] = typer.Option(
        None, "--policy", help="Approval policy: prompt, auto_approve or auto_deny"
    ),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Extra attempts per failed tool call"),
    continue_on_error: bool = typer.Option(
        False, "--continue-on-error", help="Keep executing after a step fails"
    ),
    output_json: bool = typer.Option(False, "--json", help="Print the plan run as JSON"),
):
    """Execute a plan step by step.

    Examples:
        # Run a plan, asking before sensitive tools
        stepforce run plan.yaml

        # Unattended run that keeps going after failures
        stepforce run plan.yaml --policy auto_deny --continue-on-error --json
    """
    settings = load_settings(
        ctx,
        config,
        approval_policy=policy,
        max_retries=max_retries,
        failure_policy="continue" if continue_on_error else None,
    )
    runner = PlanRunner(settings, approval_handler=ConsoleApprovalHandler())

    try:
        plan = runner.load_plan(plan_file)
    except PlanLoadError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    issues = runner.validate(plan)
    if issues:
        OutputFormatter.format_issues(issues)
        raise typer.Exit(1)

    progress_callback = None if output_json else OutputFormatter.format_progress
    run = asyncio.run(_execute(runner, plan, progress_callback))

    if output_json:
        typer.echo(json.dumps(run.to_dict(), indent=2, ensure_ascii=False, default=str))
    else:
        OutputFormatter.format_run(run)

    if run.status != "completed":
        raise typer.Exit(1)
