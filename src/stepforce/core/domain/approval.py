"""
Approval Gate

Human-in-the-loop confirmation of tool calls. A step that needs approval
awaits its gate; only that step is suspended, the event loop keeps serving
everything else (UI callbacks included). The gate is resolved exactly once
by approve / reject / cancel / timeout; later calls are no-ops because UI
double-clicks are expected.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

import structlog

from stepforce.core.domain.models import ToolCall

logger = structlog.get_logger()


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class ApprovalPolicy(str, Enum):
    """Policy for handling approval requests for sensitive operations."""

    PROMPT = "prompt"              # Ask the approval handler for each call (default)
    AUTO_APPROVE = "auto_approve"  # Approve all automatically (logs warning)
    AUTO_DENY = "auto_deny"        # Reject all automatically


@dataclass(frozen=True)
class ApprovalDecision:
    state: ApprovalState
    reason: str = ""
    decided_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def approved(self) -> bool:
        return self.state == ApprovalState.APPROVED


class ApprovalGate:
    """
    One pending decision for one tool call.

    ``Pending -> Approved | Rejected | Cancelled | TimedOut``. Only the first
    transition counts; approve/reject/cancel return whether they won.
    """

    def __init__(self, tool_call: ToolCall, timeout: float | None = None):
        self.tool_call = tool_call
        self.timeout = timeout
        self._decision: ApprovalDecision | None = None
        self._resolved = asyncio.Event()
        self.logger = logger.bind(component="approval_gate")

    @property
    def state(self) -> ApprovalState:
        return self._decision.state if self._decision else ApprovalState.PENDING

    @property
    def decision(self) -> ApprovalDecision | None:
        return self._decision

    @property
    def is_resolved(self) -> bool:
        return self._decision is not None

    def approve(self, reason: str = "") -> bool:
        return self._resolve(ApprovalState.APPROVED, reason)

    def reject(self, reason: str = "") -> bool:
        return self._resolve(ApprovalState.REJECTED, reason)

    def cancel(self, reason: str = "cancelled") -> bool:
        return self._resolve(ApprovalState.CANCELLED, reason)

    def _resolve(self, state: ApprovalState, reason: str) -> bool:
        if self._decision is not None:
            self.logger.debug(
                "approval_already_resolved",
                call_id=self.tool_call.call_id,
                current=self._decision.state.value,
                ignored=state.value,
            )
            return False

        self._decision = ApprovalDecision(state=state, reason=reason)
        self._resolved.set()
        self.logger.info(
            "approval_resolved",
            call_id=self.tool_call.call_id,
            step_id=self.tool_call.step_id,
            tool=self.tool_call.tool_name,
            state=state.value,
            reason=reason,
        )
        return True

    async def wait(self) -> ApprovalDecision:
        """Suspend until the gate is resolved or the timeout expires."""
        if self._decision is None:
            try:
                await asyncio.wait_for(self._resolved.wait(), timeout=self.timeout)
            except asyncio.TimeoutError:
                self._resolve(ApprovalState.TIMED_OUT, f"no decision within {self.timeout}s")
            except asyncio.CancelledError:
                self._resolve(ApprovalState.CANCELLED, "waiter cancelled")
                raise
        return self._decision


HandlerResult = Union[bool, None, Awaitable[Union[bool, None]]]
ApprovalCallback = Callable[[ToolCall, ApprovalGate], HandlerResult]


class ApprovalBroker:
    """
    Issues approval requests and keeps pending gates addressable by call id.

    The handler is the UI hook: it is told about the request and may either
    return a decision (True approve / False reject) or return None and call
    ``approve`` / ``reject`` on the gate or the broker later.
    """

    def __init__(
        self,
        handler: Any = None,
        policy: ApprovalPolicy = ApprovalPolicy.PROMPT,
        timeout: float | None = None,
    ):
        self.handler = handler
        self.policy = policy
        self.timeout = timeout
        self.history: list[dict[str, Any]] = []
        self._pending: dict[str, ApprovalGate] = {}
        self.logger = logger.bind(component="approval_broker")

    @property
    def pending(self) -> dict[str, ApprovalGate]:
        return dict(self._pending)

    async def request(self, tool_call: ToolCall) -> ApprovalDecision:
        """Obtain a decision for ``tool_call`` according to the policy."""
        if self.policy == ApprovalPolicy.AUTO_APPROVE:
            self.logger.warning(
                "auto_approve_policy",
                tool=tool_call.tool_name,
                step_id=tool_call.step_id,
                risk=tool_call.risk,
            )
            return self._record(tool_call, ApprovalDecision(ApprovalState.APPROVED, "auto_approve policy"))

        if self.policy == ApprovalPolicy.AUTO_DENY:
            self.logger.info("auto_deny_policy", tool=tool_call.tool_name, step_id=tool_call.step_id)
            return self._record(tool_call, ApprovalDecision(ApprovalState.REJECTED, "auto_deny policy"))

        gate = ApprovalGate(tool_call, timeout=self.timeout)
        self._pending[tool_call.call_id] = gate
        self.logger.info(
            "approval_requested",
            call_id=tool_call.call_id,
            step_id=tool_call.step_id,
            tool=tool_call.tool_name,
            risk=tool_call.risk,
        )

        notify_task: asyncio.Task | None = None
        if self.handler is not None:
            notify_task = asyncio.create_task(self._notify(gate))
        else:
            self.logger.warning("approval_without_handler", call_id=tool_call.call_id)

        try:
            decision = await gate.wait()
        finally:
            self._pending.pop(tool_call.call_id, None)
            if notify_task is not None and not notify_task.done():
                notify_task.cancel()

        return self._record(tool_call, decision)

    async def _notify(self, gate: ApprovalGate) -> None:
        callback = getattr(self.handler, "on_approval_requested", self.handler)
        try:
            answer = callback(gate.tool_call, gate)
            if inspect.isawaitable(answer):
                answer = await answer
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error("approval_handler_failed", call_id=gate.tool_call.call_id, error=str(exc))
            gate.cancel(f"approval handler failed: {exc}")
            return

        if answer is True:
            gate.approve("approved by handler")
        elif answer is False:
            gate.reject("rejected by handler")

    def approve(self, call_id: str, reason: str = "") -> bool:
        gate = self._pending.get(call_id)
        return gate.approve(reason) if gate else False

    def reject(self, call_id: str, reason: str = "") -> bool:
        gate = self._pending.get(call_id)
        return gate.reject(reason) if gate else False

    def cancel_all(self, reason: str = "cancelled") -> int:
        """Resolve every open gate as cancelled. Returns how many changed."""
        return sum(1 for gate in list(self._pending.values()) if gate.cancel(reason))

    def _record(self, tool_call: ToolCall, decision: ApprovalDecision) -> ApprovalDecision:
        self.history.append(
            {
                "timestamp": decision.decided_at,
                "call_id": tool_call.call_id,
                "step_id": tool_call.step_id,
                "tool": tool_call.tool_name,
                "risk": tool_call.risk,
                "decision": decision.state.value,
                "reason": decision.reason,
            }
        )
        return decision
