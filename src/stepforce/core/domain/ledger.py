"""
Execution Ledger

Append-only record of step outcomes for one plan run. The executor is the
only writer; placeholder resolution reads it synchronously and never
mutates it.
"""

import copy
import dataclasses
from collections.abc import Iterator
from typing import Any

import structlog

from stepforce.core.domain.errors import LookupFailure, StepResultNotFound
from stepforce.core.domain.models import ExecutionResult

logger = structlog.get_logger()


class ExecutionLedger:
    """
    Stores ExecutionResult records in arrival order.

    Step indices grow with insertion order but need not be contiguous, and a
    step may appear several times (one record per retry attempt).
    """

    def __init__(self, entries: list[ExecutionResult] | None = None):
        self._entries: list[ExecutionResult] = []
        self.logger = logger.bind(component="execution_ledger")
        for entry in entries or []:
            self.append(entry)

    def append(self, result: ExecutionResult) -> ExecutionResult:
        """Append a record. The stored copy is detached from the caller's data."""
        stored = dataclasses.replace(
            result,
            tool_args=copy.deepcopy(result.tool_args),
            tool_result=copy.deepcopy(result.tool_result),
        )
        self._entries.append(stored)
        self.logger.debug(
            "ledger_append",
            step_id=stored.step_id,
            step_index=stored.step_index,
            success=stored.success,
            skipped=stored.skipped,
            attempt=stored.attempt,
        )
        return stored

    @property
    def entries(self) -> tuple[ExecutionResult, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ExecutionResult]:
        return iter(tuple(self._entries))

    def for_step(self, step_number: int) -> list[ExecutionResult]:
        """All records matching ``step<N>`` by id or by index ``N-1``."""
        step_id = f"step{step_number}"
        return [
            entry
            for entry in self._entries
            if entry.step_id == step_id or entry.step_index == step_number - 1
        ]

    def last_successful_before(self, step_index: int) -> ExecutionResult | None:
        """Most recent successful record whose index is lower than ``step_index``."""
        candidates = [
            entry
            for entry in self._entries
            if entry.step_index < step_index and entry.success is True
        ]
        return candidates[-1] if candidates else None

    def find_by_step(self, step_number: int) -> ExecutionResult:
        """
        Resolve ``step<N>`` to the record placeholders should read.

        Prefers the last successful record for the step, else its last
        record of any outcome. If that record is marked skipped, routes to
        the most recent successful record of an earlier step.

        Raises:
            StepResultNotFound: with reason ``no_entry`` when the step has no
                record, or ``skipped_without_fallback`` when it was skipped and
                nothing earlier succeeded
        """
        matching = self.for_step(step_number)
        if not matching:
            raise StepResultNotFound(step_number, LookupFailure.NO_ENTRY)

        successful = [entry for entry in matching if entry.success is True]
        chosen = successful[-1] if successful else matching[-1]

        if not chosen.skipped:
            return chosen

        fallback = chosen
        while fallback is not None and fallback.skipped:
            fallback = self.last_successful_before(fallback.step_index)

        if fallback is None:
            self.logger.warning("skipped_step_without_fallback", step=step_number)
            raise StepResultNotFound(step_number, LookupFailure.SKIPPED_WITHOUT_FALLBACK)

        self.logger.debug(
            "skipped_step_fallback",
            step=step_number,
            fallback_step_id=fallback.step_id,
            fallback_index=fallback.step_index,
        )
        return fallback

    def get(self, step_number: int) -> ExecutionResult | None:
        """Like ``find_by_step`` but returns None instead of raising."""
        try:
            return self.find_by_step(step_number)
        except StepResultNotFound:
            return None

    def snapshot(self) -> list[dict[str, Any]]:
        """Serializable copy of every record, in arrival order."""
        return [entry.to_dict() for entry in self._entries]

    @classmethod
    def from_snapshot(cls, data: list[dict[str, Any]]) -> "ExecutionLedger":
        return cls([ExecutionResult.from_dict(item) for item in data or []])
