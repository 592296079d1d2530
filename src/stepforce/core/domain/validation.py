"""
Plan validation run before execution.

Catches the mistakes that would otherwise surface mid-run: duplicate step
ids, unknown tools and placeholders that point at steps which do not exist
or have not run yet (forward references).
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from stepforce.core.domain.models import Plan
from stepforce.core.domain.placeholders import referenced_steps


@dataclass
class PlanIssue:
    path: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "message": self.message}


def validate_plan(plan: Plan, tool_names: Iterable[str] | None = None) -> list[PlanIssue]:
    """Return every problem found in ``plan``; an empty list means valid."""
    issues: list[PlanIssue] = []
    known_tools = set(tool_names) if tool_names is not None else None

    if not plan.steps:
        issues.append(PlanIssue("steps", "Plan has no steps"))
        return issues

    positions = {step.step_id: index for index, step in enumerate(plan.steps)}
    seen: set[str] = set()
    for index, step in enumerate(plan.steps):
        where = f"steps[{index}]"

        if step.step_id in seen:
            issues.append(PlanIssue(f"{where}.step_id", f"Duplicate step id '{step.step_id}'"))
        seen.add(step.step_id)

        if not step.tool:
            issues.append(PlanIssue(f"{where}.tool", "Step has no tool"))
        elif known_tools is not None and step.tool not in known_tools:
            issues.append(PlanIssue(f"{where}.tool", f"Unknown tool '{step.tool}'"))

        for field_name, value in (("input", step.input), ("when", step.when)):
            for number in referenced_steps(value):
                issue = _check_reference(number, index, positions, len(plan.steps))
                if issue:
                    issues.append(
                        PlanIssue(f"{where}.{field_name}", issue.format(ref=f"step{number}", step=step.step_id))
                    )

    return issues


def _check_reference(number: int, index: int, positions: dict[str, int], step_count: int) -> str | None:
    """Check ``{{step<number>}}`` used by the step at ``index``.

    A reference matches the step whose id is ``step<number>`` or the step at
    position ``number - 1``; it is fine when either of them runs earlier.
    """
    candidates = []
    named = positions.get(f"step{number}")
    if named is not None:
        candidates.append(named)
    if 1 <= number <= step_count:
        candidates.append(number - 1)

    if not candidates:
        return "References {ref}, which does not exist"
    if min(candidates) >= index:
        return "References {ref}, which has not run yet when {step} executes"
    return None
