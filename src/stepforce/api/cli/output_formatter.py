"""
Output formatting for the CLI.
"""

import json
from typing import Any, Dict, List

from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

from stepforce.core.domain.models import PlanRun, ProgressUpdate, ToolCall
from stepforce.core.domain.validation import PlanIssue
from stepforce.core.interfaces.tools import ToolProtocol

console = Console()

STATUS_STYLES = {
    "recorded": "green",
    "completed": "green",
    "failed": "red",
    "skipped": "yellow",
    "cancelled": "magenta",
}


def _shorten(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return _shorten(json.dumps(value, ensure_ascii=False, default=str))
    return _shorten(str(value))


class OutputFormatter:
    """Renders plan runs, ledgers and tools with Rich."""

    @staticmethod
    def format_progress(update: ProgressUpdate) -> None:
        """Print terminal step transitions as they happen."""
        status = update.details.get("status")
        if status not in STATUS_STYLES:
            return
        style = STATUS_STYLES[status]
        extra = update.details.get("error") or update.details.get("reason") or ""
        suffix = f" [dim]{_shorten(str(extra), 80)}[/dim]" if extra else ""
        console.print(f"[{style}]{status:>9}[/{style}]  {update.details.get('step_id', '')}{suffix}")

    @staticmethod
    def format_run(run: PlanRun) -> None:
        table = Table(title=f"Plan {run.plan_id}")
        table.add_column("Step", style="cyan", no_wrap=True)
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Error", style="white")

        for outcome in run.outcomes:
            style = STATUS_STYLES.get(outcome.status.value, "white")
            error = (outcome.error or {}).get("message", "")
            table.add_row(
                outcome.step_id,
                f"[{style}]{outcome.status.value}[/{style}]",
                str(outcome.attempts),
                _shorten(error, 80),
            )

        console.print(table)
        style = STATUS_STYLES.get(run.status, "white")
        console.print(f"Run [bold {style}]{run.status}[/bold {style}] with {len(run.ledger)} ledger entries")

    @staticmethod
    def format_ledger(entries: List[Dict[str, Any]]) -> None:
        table = Table(title="Execution Ledger")
        table.add_column("#", justify="right")
        table.add_column("Step", style="cyan", no_wrap=True)
        table.add_column("Tool", style="green")
        table.add_column("Attempt", justify="right")
        table.add_column("Success")
        table.add_column("Result", style="white")

        for position, entry in enumerate(entries, start=1):
            table.add_row(
                str(position),
                entry.get("step_id", ""),
                entry.get("tool_name", ""),
                str(entry.get("attempt", 1)),
                _cell(entry.get("success")),
                _cell(entry.get("tool_result")),
            )

        console.print(table)

    @staticmethod
    def format_issues(issues: List[PlanIssue]) -> None:
        table = Table(title="Plan Issues")
        table.add_column("Location", style="cyan", no_wrap=True)
        table.add_column("Problem", style="red")
        for issue in issues:
            table.add_row(issue.path, issue.message)
        console.print(table)

    @staticmethod
    def format_tool_list(tools: List[ToolProtocol]) -> None:
        table = Table(title="Available Tools")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Approval", style="yellow")
        table.add_column("Risk", style="magenta")
        table.add_column("Description", style="white")

        for tool in tools:
            table.add_row(
                tool.name,
                "required" if tool.requires_approval else "",
                tool.approval_risk_level.value,
                _shorten(tool.description, 50),
            )

        console.print(table)

    @staticmethod
    def format_value(value: Any) -> None:
        if isinstance(value, (dict, list)):
            console.print(JSON.from_data(value, default=str))
        else:
            console.print(str(value), markup=False)

    @staticmethod
    def format_approval_request(tool_call: ToolCall) -> None:
        console.print(
            Panel(
                tool_call.preview,
                title=f"Approval required: {tool_call.step_id} ({tool_call.tool_name})",
                subtitle=f"risk: {tool_call.risk}",
                border_style="red" if tool_call.risk == "high" else "yellow",
            )
        )
