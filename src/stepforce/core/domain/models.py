"""
Core Domain Models

Data models shared by the plan-execution core: plan definitions, the
immutable ledger record of each step attempt, approval requests and the
overall outcome of a plan run.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


def _now() -> str:
    return datetime.now().isoformat()


class StepStatus(str, Enum):
    """Lifecycle of a single plan step inside the executor."""

    QUEUED = "queued"
    NORMALIZING = "normalizing"
    AWAITING_APPROVAL = "awaiting_approval"
    INVOKING = "invoking"
    RECORDED = "recorded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            StepStatus.RECORDED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.CANCELLED,
        )


@dataclass(frozen=True)
class ExecutionResult:
    """
    Record of one completed (or attempted) plan step.

    Created exactly once per attempt, right after the tool call returns or
    the step is skipped, and never mutated afterwards. A retried step gets a
    new record with a higher ``attempt``.

    Attributes:
        step_id: Stable identifier, canonically ``step<N>``
        step_index: Zero-based position in the plan
        tool_name: Name of the invoked tool
        tool_args: Resolved arguments actually sent to the tool
        tool_result: Raw tool output (may be JSON text or a content envelope)
        success: Whether the attempt succeeded (None if unknown)
        reason: Free-text explanation (error detail for failures)
        observation: Free-text note for humans, not machine-parsed
        attempt: 1-based attempt counter for retries
        timestamp: When the record was created
    """

    step_id: str
    step_index: int
    tool_name: str
    tool_args: Any = None
    tool_result: Any = None
    success: bool | None = None
    reason: str = ""
    observation: str = ""
    attempt: int = 1
    timestamp: str = field(default_factory=_now)

    @property
    def skipped(self) -> bool:
        return isinstance(self.tool_result, dict) and self.tool_result.get("skipped") is True

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "step_index": self.step_index,
            "tool_name": self.tool_name,
            "tool_args": copy.deepcopy(self.tool_args),
            "tool_result": copy.deepcopy(self.tool_result),
            "success": self.success,
            "reason": self.reason,
            "observation": self.observation,
            "attempt": self.attempt,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ExecutionResult":
        """Build a record from a snapshot dict, tolerating camelCase keys."""
        step_index = data.get("step_index", data.get("stepIndex", 0))
        step_id = data.get("step_id") or data.get("stepId") or f"step{int(step_index) + 1}"
        return ExecutionResult(
            step_id=str(step_id),
            step_index=int(step_index),
            tool_name=str(data.get("tool_name") or data.get("toolName") or "unknown"),
            tool_args=data.get("tool_args", data.get("toolArgs")),
            tool_result=data.get("tool_result", data.get("toolResult")),
            success=data.get("success"),
            reason=str(data.get("reason") or data.get("step_reason") or ""),
            observation=str(data.get("observation") or ""),
            attempt=int(data.get("attempt", 1)),
            timestamp=str(data.get("timestamp") or _now()),
        )


@dataclass
class PlanStep:
    """
    One step of a plan as produced by the planner.

    Attributes:
        step_id: Identifier used by placeholders (``step<N>``)
        tool: Tool name to invoke
        input: Raw arguments, possibly JSON text and/or placeholder-laden
        reason: Why the planner chose this step
        requires_approval: Overrides the tool's own approval flag when set
        when: Optional condition; a falsy value after placeholder resolution
              means the branch is not taken and the step is skipped
    """

    step_id: str
    tool: str
    input: Any = None
    reason: str = ""
    requires_approval: bool | None = None
    when: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step_id": self.step_id,
            "tool": self.tool,
            "input": self.input,
            "reason": self.reason,
        }
        if self.requires_approval is not None:
            data["requires_approval"] = self.requires_approval
        if self.when is not None:
            data["when"] = self.when
        return data


@dataclass
class Plan:
    """Ordered list of steps to execute."""

    steps: list[PlanStep]
    goal: str = ""
    plan_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @staticmethod
    def from_dict(data: Any) -> "Plan":
        """Create a Plan from a parsed planner payload.

        Accepts either ``{"steps": [...]}`` or a bare list of steps. Steps
        without an identifier get ``step<N>`` from their position.
        """
        if isinstance(data, list):
            data = {"steps": data}
        data = data or {}

        steps: list[PlanStep] = []
        for position, raw in enumerate(data.get("steps", []) or [], start=1):
            raw = raw or {}
            step_id = raw.get("step_id") or raw.get("id") or f"step{position}"
            tool = raw.get("tool") or raw.get("tool_name") or ""
            if "input" in raw:
                step_input = raw["input"]
            else:
                step_input = raw.get("args", raw.get("arguments"))
            steps.append(
                PlanStep(
                    step_id=str(step_id),
                    tool=str(tool),
                    input=step_input,
                    reason=str(raw.get("reason", "")),
                    requires_approval=raw.get("requires_approval"),
                    when=raw.get("when"),
                )
            )

        return Plan(
            steps=steps,
            goal=str(data.get("goal", "")),
            plan_id=str(data.get("plan_id") or uuid.uuid4()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "goal": self.goal,
            "steps": [step.to_dict() for step in self.steps],
        }


@dataclass
class ToolCall:
    """A pending tool invocation presented for human approval."""

    step_id: str
    step_index: int
    tool_name: str
    args: Any
    risk: str = "medium"
    preview: str = ""
    call_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class StepOutcome:
    """Final status of one plan step after the run."""

    step_id: str
    step_index: int
    status: StepStatus = StepStatus.QUEUED
    attempts: int = 0
    error: dict[str, Any] | None = None
    result: ExecutionResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "step_index": self.step_index,
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class PlanRun:
    """
    Outcome of executing a plan.

    Attributes:
        plan_id: Identifier of the executed plan
        status: completed, failed or cancelled
        outcomes: Per-step outcomes in plan order
        ledger: Snapshot of every ledger entry, for post-mortem inspection
    """

    plan_id: str
    status: str
    outcomes: list[StepOutcome] = field(default_factory=list)
    ledger: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "status": self.status,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "ledger": self.ledger,
        }


@dataclass
class ProgressUpdate:
    """Progress event emitted by the executor for every step transition.

    Attributes:
        timestamp: When this update occurred
        event_type: Transition or lifecycle event (plan_started, step_invoking, ...)
        message: Human-readable description
        details: Structured data about the event
    """

    timestamp: datetime
    event_type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
