"""
Application Layer - Plan Runner Service

Service layer wiring the plan-execution core to its collaborators. Both the
CLI and embedding hosts use it.

The PlanRunner:
- Builds the tool registry, approval broker and executor from settings
- Loads plans from YAML or JSON files
- Validates plans against the registered tools
- Executes plans with progress forwarding and structured logging
"""

import json
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
import yaml

from stepforce.application.config import ExecutorSettings
from stepforce.core.domain.approval import ApprovalBroker, ApprovalPolicy
from stepforce.core.domain.executor import FailurePolicy, PlanExecutor
from stepforce.core.domain.ledger import ExecutionLedger
from stepforce.core.domain.models import Plan, PlanRun, ProgressUpdate
from stepforce.core.domain.normalizer import StepInputNormalizer
from stepforce.core.domain.placeholders import PlaceholderResolver
from stepforce.core.domain.validation import PlanIssue, validate_plan
from stepforce.core.interfaces.tools import ApprovalHandlerProtocol
from stepforce.infrastructure.tools.builtin import builtin_tools
from stepforce.infrastructure.tools.registry import ToolRegistry

logger = structlog.get_logger()


class PlanLoadError(ValueError):
    """A plan file is missing or does not contain a plan."""


def load_document(path: Path) -> Any:
    """Read a JSON or YAML document; the extension picks the parser."""
    if not path.exists():
        raise PlanLoadError(f"File not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise PlanLoadError(f"Cannot parse {path}: {exc}") from exc


class PlanRunner:
    """Service layer orchestrating plan execution.

    Holds the executor of the current run so a host (signal handler, UI
    button) can cancel it.
    """

    def __init__(
        self,
        settings: ExecutorSettings | None = None,
        registry: ToolRegistry | None = None,
        approval_handler: ApprovalHandlerProtocol | None = None,
    ):
        """
        Args:
            settings: Executor settings; environment-derived defaults if omitted
            registry: Tool registry; the builtin tools if omitted
            approval_handler: UI hook for approval requests (PROMPT policy)
        """
        self.settings = settings or ExecutorSettings()
        self.registry = registry or ToolRegistry(builtin_tools())
        self.approval_handler = approval_handler
        self.executor: PlanExecutor | None = None
        self.logger = logger.bind(component="plan_runner")

    def load_plan(self, path: Path) -> Plan:
        data = load_document(path)
        if not isinstance(data, (dict, list)):
            raise PlanLoadError(f"{path} does not contain a plan object or step list")
        plan = Plan.from_dict(data)
        self.logger.debug("plan_loaded", path=str(path), plan_id=plan.plan_id, steps=len(plan.steps))
        return plan

    def validate(self, plan: Plan) -> list[PlanIssue]:
        issues = validate_plan(plan, tool_names=self.registry.names)
        if issues:
            self.logger.warning("plan_invalid", plan_id=plan.plan_id, issues=len(issues))
        return issues

    def build_executor(
        self,
        progress_callback: Callable[[ProgressUpdate], None] | None = None,
    ) -> PlanExecutor:
        """Create an executor configured from the current settings."""
        broker = ApprovalBroker(
            handler=self.approval_handler,
            policy=ApprovalPolicy(self.settings.approval_policy),
            timeout=self.settings.approval_timeout_seconds,
        )
        return PlanExecutor(
            invoker=self.registry,
            broker=broker,
            max_retries=self.settings.max_retries,
            retry_backoff=self.settings.retry_backoff_seconds,
            failure_policy=FailurePolicy(self.settings.failure_policy),
            busy_poll_interval=self.settings.busy_poll_interval_seconds,
            busy_max_wait=self.settings.busy_max_wait_seconds,
            progress_callback=progress_callback,
        )

    async def run_plan(
        self,
        plan: Plan,
        progress_callback: Callable[[ProgressUpdate], None] | None = None,
        ledger: ExecutionLedger | None = None,
    ) -> PlanRun:
        """Execute ``plan`` and return its outcome.

        Step failures never raise; they are reported through the returned
        PlanRun. Progress updates are forwarded to ``progress_callback``.
        """
        start_time = datetime.now()
        self.logger.info(
            "plan.execution.started",
            plan_id=plan.plan_id,
            goal=plan.goal[:100],
            steps=len(plan.steps),
            approval_policy=ApprovalPolicy(self.settings.approval_policy).value,
        )

        self.executor = self.build_executor(progress_callback)
        run = await self.executor.run(plan, ledger=ledger)

        duration = (datetime.now() - start_time).total_seconds()
        log = self.logger.info if run.status == "completed" else self.logger.warning
        log(
            "plan.execution.finished",
            plan_id=plan.plan_id,
            status=run.status,
            duration_seconds=duration,
            ledger_entries=len(run.ledger),
            approvals=len(self.executor.broker.history),
        )
        return run

    def cancel(self, reason: str = "cancelled by user") -> bool:
        """Cancel the current run. Returns False when nothing is running."""
        if self.executor is None:
            return False
        self.executor.cancel(reason)
        return True

    @staticmethod
    def resolve_template(template: Any, ledger_entries: list[dict[str, Any]]) -> Any:
        """Resolve a step input against a ledger snapshot, as a step would see it.

        Text holding a JSON object or array is parsed first; every string
        leaf then has its placeholders resolved.

        Raises:
            NormalizationError: a placeholder could not be resolved
        """
        resolver = PlaceholderResolver(ExecutionLedger.from_snapshot(ledger_entries))
        return StepInputNormalizer(resolver).normalize(template, tool_name="template")

    @staticmethod
    def load_ledger(path: Path) -> list[dict[str, Any]]:
        """Read a ledger snapshot: a list of entries or a saved plan run."""
        data = load_document(path)
        if isinstance(data, dict):
            data = data.get("ledger")
        if not isinstance(data, list):
            raise PlanLoadError(f"{path} does not contain a ledger entry list")
        return data
