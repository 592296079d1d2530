"""
Plan Executor

Runs a plan step by step on a single event loop:

    QUEUED -> NORMALIZING -> (AWAITING_APPROVAL)? -> INVOKING
           -> RECORDED | FAILED | SKIPPED        (CANCELLED if never reached)

Every attempt produces exactly one ledger entry, appended in completion
order. The only suspension points are the approval gate, the tool call and
the bounded busy poll; nothing here blocks the loop.
"""

import asyncio
import json
import math
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from stepforce.core.domain.approval import ApprovalBroker, ApprovalState
from stepforce.core.domain.errors import (
    NormalizationError,
    StepforceError,
    ToolInvocationError,
    ToolNotFoundError,
)
from stepforce.core.domain.ledger import ExecutionLedger
from stepforce.core.domain.models import (
    ExecutionResult,
    Plan,
    PlanRun,
    PlanStep,
    ProgressUpdate,
    StepOutcome,
    StepStatus,
    ToolCall,
)
from stepforce.core.domain.normalizer import StepInputNormalizer
from stepforce.core.domain.placeholders import PlaceholderResolver
from stepforce.core.interfaces.tools import ToolInvokerProtocol

logger = structlog.get_logger()

_FALSY_TEXT = {"", "false", "0", "no", "none", "null"}


class FailurePolicy(str, Enum):
    """What to do with the remaining steps after a step fails."""

    HALT = "halt"
    CONTINUE = "continue"


class _Abandoned(Exception):
    """An in-flight tool call was abandoned because the run was cancelled."""


async def wait_for_idle(
    is_busy: Callable[[], bool],
    interval: float = 0.05,
    max_wait: float = 60.0,
    is_cancelled: Callable[[], bool] | None = None,
) -> bool:
    """
    Poll ``is_busy`` until it reports False.

    Gives up after ``max_wait`` seconds (or on cancellation) with a warning
    instead of raising, so callers simply proceed as if no longer busy.

    Returns:
        True if the probe went idle, False on timeout or cancellation
    """
    if max_wait <= 0:
        max_polls = 0
    else:
        max_polls = max(1, math.ceil(max_wait / interval)) if interval > 0 else 1
    polls = 0
    while is_busy():
        if is_cancelled is not None and is_cancelled():
            logger.info("busy_wait_cancelled", polls=polls)
            return False
        if polls >= max_polls:
            logger.warning("busy_wait_timeout", max_wait=max_wait, polls=polls)
            return False
        polls += 1
        logger.debug("busy_wait", poll=polls, max_polls=max_polls)
        await asyncio.sleep(interval)
    return True


def is_truthy_condition(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_TEXT
    return bool(value)


class PlanExecutor:
    """
    Orchestrates plan execution against an opaque tool invoker.

    The executor owns the ledger for writes. Failure handling is policy:
    ``FailurePolicy.HALT`` stops at the first failed step (the remaining
    steps are marked cancelled, the ledger stays intact), ``CONTINUE`` moves
    on. Approval decisions other than "approved" skip the step.
    """

    def __init__(
        self,
        invoker: ToolInvokerProtocol,
        broker: ApprovalBroker | None = None,
        max_retries: int = 0,
        retry_backoff: float = 0.0,
        failure_policy: FailurePolicy = FailurePolicy.HALT,
        busy_probe: Callable[[], bool] | None = None,
        busy_poll_interval: float = 0.05,
        busy_max_wait: float = 60.0,
        progress_callback: Callable[[ProgressUpdate], None] | None = None,
    ):
        """
        Args:
            invoker: Anything with ``async invoke(tool_name, args)``
            broker: Approval broker; a handler-less PROMPT broker by default,
                    resolved externally via ``broker.approve(call_id)``
            max_retries: Extra attempts after a failed tool call
            retry_backoff: Base delay in seconds, doubled per retry
            failure_policy: Halt or continue after a failed step
            busy_probe: Reports whether a previous tool execution is in flight
            busy_poll_interval: Seconds between busy probes
            busy_max_wait: Budget in seconds before giving up on the probe
            progress_callback: Receives a ProgressUpdate per transition
        """
        self.invoker = invoker
        self.broker = broker or ApprovalBroker()
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff = max(0.0, float(retry_backoff))
        self.failure_policy = FailurePolicy(failure_policy)
        self.busy_probe = busy_probe
        self.busy_poll_interval = busy_poll_interval
        self.busy_max_wait = busy_max_wait
        self.progress_callback = progress_callback
        self.logger = logger.bind(component="plan_executor")

        self.ledger = ExecutionLedger()
        self._resolver = PlaceholderResolver(self.ledger)
        self._normalizer = StepInputNormalizer(self._resolver)
        self._cancel_event = asyncio.Event()
        self._cancel_reason = ""

    # ===== Cancellation =====

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """
        Stop the run: no new tool invocations start, open approval gates
        resolve as cancelled and in-flight calls are abandoned.
        """
        if self._cancel_event.is_set():
            return
        self._cancel_reason = reason
        self._cancel_event.set()
        closed = self.broker.cancel_all(reason)
        self.logger.info("plan_cancel_requested", reason=reason, gates_cancelled=closed)

    # ===== Run =====

    async def run(self, plan: Plan, ledger: ExecutionLedger | None = None) -> PlanRun:
        """
        Execute every step of ``plan`` in order.

        Args:
            plan: The plan to run
            ledger: Optional ledger to append to (a fresh one by default)

        A ``cancel()`` issued before the run starts cancels it. The cancel
        flag is cleared when the run finishes, so the executor can be reused.

        Returns:
            PlanRun with per-step outcomes and the ledger snapshot. Step
            errors never escape; they are recorded and reflected in status.
        """
        self.ledger = ledger if ledger is not None else ExecutionLedger()
        self._resolver = PlaceholderResolver(self.ledger)
        self._normalizer = StepInputNormalizer(self._resolver)

        outcomes = [StepOutcome(step_id=step.step_id, step_index=index) for index, step in enumerate(plan.steps)]
        start_time = datetime.now()
        self.logger.info("plan_started", plan_id=plan.plan_id, steps=len(plan.steps))
        self._emit("plan_started", f"Executing {len(plan.steps)} steps", plan_id=plan.plan_id)

        halted = False
        for index, step in enumerate(plan.steps):
            outcome = outcomes[index]
            if halted or self.cancelled:
                self._transition(outcome, StepStatus.CANCELLED)
                continue

            await self._run_step(step, index, outcome)

            if outcome.status == StepStatus.FAILED and self.failure_policy == FailurePolicy.HALT:
                self.logger.warning("plan_halted", plan_id=plan.plan_id, step_id=step.step_id)
                halted = True

        if self.cancelled:
            status = "cancelled"
        elif any(outcome.status == StepStatus.FAILED for outcome in outcomes):
            status = "failed"
        else:
            status = "completed"

        duration = (datetime.now() - start_time).total_seconds()
        self.logger.info(
            "plan_finished",
            plan_id=plan.plan_id,
            status=status,
            duration_seconds=duration,
            ledger_entries=len(self.ledger),
        )
        self._emit("plan_finished", f"Plan {status}", plan_id=plan.plan_id, status=status)
        self._cancel_event.clear()
        self._cancel_reason = ""

        return PlanRun(
            plan_id=plan.plan_id,
            status=status,
            outcomes=outcomes,
            ledger=self.ledger.snapshot(),
        )

    async def _run_step(self, step: PlanStep, index: int, outcome: StepOutcome) -> None:
        log = self.logger.bind(step_id=step.step_id, step_index=index, tool=step.tool)

        # 1. Normalize (condition first: an untaken branch may reference
        #    data that will never exist)
        self._transition(outcome, StepStatus.NORMALIZING)
        try:
            if step.when is not None:
                condition = self._normalizer.normalize({"when": step.when}, step.tool)["when"]
                if not is_truthy_condition(condition):
                    log.info("step_condition_not_met")
                    self._record_skip(step, index, outcome, step.input, "condition_not_met")
                    return
            args = self._normalizer.normalize(step.input, step.tool)
        except NormalizationError as exc:
            log.error("step_normalization_failed", error=str(exc))
            self._record(
                step,
                index,
                outcome,
                args=step.input,
                tool_result={"success": False, "error": str(exc), **exc.to_dict()},
                success=False,
                reason=str(exc),
                attempt=1,
            )
            outcome.error = exc.to_dict()
            self._transition(outcome, StepStatus.FAILED, error=str(exc))
            return

        if isinstance(args, str) and hasattr(self.invoker, "map_text_input"):
            args = self.invoker.map_text_input(step.tool, args)

        # 2. Approval
        if self._needs_approval(step):
            if self.cancelled:
                self._record_skip(step, index, outcome, args, "cancelled", approval=ApprovalState.CANCELLED.value)
                return
            self._transition(outcome, StepStatus.AWAITING_APPROVAL)
            decision = await self.broker.request(self._build_tool_call(step, index, args))
            if not decision.approved:
                log.info("step_skipped_approval", decision=decision.state.value)
                self._record_skip(step, index, outcome, args, f"approval_{decision.state.value}", approval=decision.state.value)
                return

        # 3. Invoke with retries
        attempt = 0
        while True:
            attempt += 1
            if self.cancelled:
                self._record_skip(step, index, outcome, args, "cancelled", approval=ApprovalState.CANCELLED.value)
                return

            if self.busy_probe is not None:
                await wait_for_idle(
                    self.busy_probe,
                    interval=self.busy_poll_interval,
                    max_wait=self.busy_max_wait,
                    is_cancelled=lambda: self.cancelled,
                )

            self._transition(outcome, StepStatus.INVOKING, attempt=attempt)
            try:
                result = await self._invoke_cancellable(step.tool, args)
            except _Abandoned:
                log.info("tool_call_abandoned", attempt=attempt)
                self._transition(outcome, StepStatus.CANCELLED)
                return
            except Exception as exc:
                error = self._as_invocation_error(step.tool, exc)
                tool_result = {
                    "success": False,
                    "error": str(error),
                    "error_type": type(exc).__name__,
                }
            else:
                if isinstance(result, dict) and result.get("success") is False:
                    error = ToolInvocationError(step.tool, str(result.get("error") or "Tool execution failed"))
                    tool_result = result
                else:
                    self._record(step, index, outcome, args=args, tool_result=result, success=True, attempt=attempt)
                    log.info("step_recorded", attempt=attempt)
                    self._transition(outcome, StepStatus.RECORDED, attempt=attempt)
                    return

            self._record(
                step,
                index,
                outcome,
                args=args,
                tool_result=tool_result,
                success=False,
                reason=str(error),
                attempt=attempt,
            )
            outcome.error = error.to_dict()
            log.warning("tool_call_failed", attempt=attempt, error=str(error), retryable=error.retryable)

            if not error.retryable or attempt > self.max_retries:
                self._transition(outcome, StepStatus.FAILED, error=str(error), attempts=attempt)
                return

            await self._backoff(attempt)

    # ===== Helpers =====

    def _needs_approval(self, step: PlanStep) -> bool:
        if step.requires_approval is not None:
            return bool(step.requires_approval)
        check = getattr(self.invoker, "requires_approval", None)
        if not callable(check):
            return False
        try:
            return bool(check(step.tool))
        except ToolNotFoundError:
            return False

    def _build_tool_call(self, step: PlanStep, index: int, args: Any) -> ToolCall:
        risk, preview = "medium", ""
        describe = getattr(self.invoker, "describe_call", None)
        if callable(describe):
            try:
                risk, preview = describe(step.tool, args)
            except ToolNotFoundError:
                pass
        if not preview:
            preview = f"Tool: {step.tool}\n{json.dumps(args, indent=2, ensure_ascii=False, default=str)}"
        return ToolCall(
            step_id=step.step_id,
            step_index=index,
            tool_name=step.tool,
            args=args,
            risk=risk,
            preview=preview,
        )

    async def _invoke_cancellable(self, tool_name: str, args: Any) -> Any:
        invoke_task = asyncio.ensure_future(self.invoker.invoke(tool_name, args))
        cancel_task = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({invoke_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()

        if self._cancel_event.is_set():
            if not invoke_task.done():
                invoke_task.cancel()
            # The eventual result, if any, is discarded
            invoke_task.add_done_callback(lambda task: task.cancelled() or task.exception())
            raise _Abandoned()

        return invoke_task.result()

    async def _backoff(self, attempt: int) -> None:
        if self.retry_backoff <= 0:
            return
        delay = self.retry_backoff * (2 ** (attempt - 1))
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    @staticmethod
    def _as_invocation_error(tool_name: str, exc: Exception) -> ToolInvocationError:
        if isinstance(exc, ToolInvocationError):
            return exc
        if isinstance(exc, StepforceError):
            return ToolInvocationError(tool_name, str(exc), retryable=False)
        return ToolInvocationError(tool_name, str(exc) or type(exc).__name__)

    def _record_skip(
        self,
        step: PlanStep,
        index: int,
        outcome: StepOutcome,
        args: Any,
        reason: str,
        approval: str | None = None,
    ) -> None:
        tool_result: dict[str, Any] = {"success": False, "skipped": True, "reason": reason}
        if approval is not None:
            tool_result["approval"] = approval
        self._record(step, index, outcome, args=args, tool_result=tool_result, success=False, reason=reason, attempt=outcome.attempts + 1)
        self._transition(outcome, StepStatus.SKIPPED, reason=reason)

    def _record(
        self,
        step: PlanStep,
        index: int,
        outcome: StepOutcome,
        args: Any,
        tool_result: Any,
        success: bool,
        attempt: int,
        reason: str = "",
    ) -> None:
        outcome.result = self.ledger.append(
            ExecutionResult(
                step_id=step.step_id,
                step_index=index,
                tool_name=step.tool,
                tool_args=args,
                tool_result=tool_result,
                success=success,
                reason=reason,
                observation=step.reason,
                attempt=attempt,
            )
        )
        outcome.attempts = attempt

    def _transition(self, outcome: StepOutcome, status: StepStatus, **details: Any) -> None:
        outcome.status = status
        self._emit(
            f"step_{status.value}",
            f"{outcome.step_id}: {status.value}",
            step_id=outcome.step_id,
            step_index=outcome.step_index,
            status=status.value,
            **details,
        )

    def _emit(self, event_type: str, message: str, **details: Any) -> None:
        if self.progress_callback is None:
            return
        update = ProgressUpdate(
            timestamp=datetime.now(),
            event_type=event_type,
            message=message,
            details=details,
        )
        try:
            self.progress_callback(update)
        except Exception as exc:
            self.logger.warning("progress_callback_failed", event_type=event_type, error=str(exc))
