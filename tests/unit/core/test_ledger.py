"""
Unit Tests for ExecutionLedger

Tests append semantics, step lookup preferences and the skipped-step
fallback.
"""

import pytest

from stepforce.core.domain.errors import LookupFailure, StepResultNotFound
from stepforce.core.domain.ledger import ExecutionLedger
from stepforce.core.domain.models import ExecutionResult


def make_entry(step: int, result=None, success=True, **kwargs) -> ExecutionResult:
    return ExecutionResult(
        step_id=f"step{step}",
        step_index=step - 1,
        tool_name=kwargs.pop("tool_name", "echo"),
        tool_args=kwargs.pop("tool_args", {}),
        tool_result=result,
        success=success,
        **kwargs,
    )


def skipped(step: int) -> ExecutionResult:
    return make_entry(step, {"success": False, "skipped": True, "reason": "approval_rejected"}, success=False)


@pytest.fixture
def ledger():
    return ExecutionLedger()


class TestAppend:
    """Tests for appending records."""

    def test_preserves_arrival_order(self, ledger):
        """Test that entries are kept in append order."""
        ledger.append(make_entry(2, {"b": 1}))
        ledger.append(make_entry(1, {"a": 1}))
        assert [entry.step_id for entry in ledger] == ["step2", "step1"]
        assert len(ledger) == 2

    def test_stored_copy_is_detached(self, ledger):
        """Test that mutating the caller's data does not change the ledger."""
        result = {"items": [1, 2]}
        ledger.append(make_entry(1, result))
        result["items"].append(3)
        assert ledger.entries[0].tool_result == {"items": [1, 2]}

    def test_records_are_immutable(self, ledger):
        """Test that stored records cannot be reassigned."""
        stored = ledger.append(make_entry(1, {"a": 1}))
        with pytest.raises(AttributeError):
            stored.success = False


class TestFindByStep:
    """Tests for find_by_step."""

    def test_no_entry_raises(self, ledger):
        """Test lookup of a step that never ran."""
        with pytest.raises(StepResultNotFound) as exc_info:
            ledger.find_by_step(3)
        assert exc_info.value.reason == LookupFailure.NO_ENTRY
        assert exc_info.value.step_number == 3

    def test_prefers_last_successful_entry(self, ledger):
        """Test that a later failure does not hide an earlier success."""
        ledger.append(make_entry(1, {"v": "first"}))
        ledger.append(make_entry(1, {"v": "second"}))
        ledger.append(make_entry(1, {"error": "boom"}, success=False, attempt=3))
        assert ledger.find_by_step(1).tool_result == {"v": "second"}

    def test_falls_back_to_last_entry_without_success(self, ledger):
        """Test that a failed-only step still resolves to its last record."""
        ledger.append(make_entry(1, {"error": "one"}, success=False))
        ledger.append(make_entry(1, {"error": "two"}, success=False, attempt=2))
        assert ledger.find_by_step(1).tool_result == {"error": "two"}

    def test_matches_by_index_when_id_differs(self, ledger):
        """Test that custom step ids are still reachable by position."""
        ledger.append(ExecutionResult(step_id="search", step_index=0, tool_name="web", tool_result={"a": 1}, success=True))
        assert ledger.find_by_step(1).step_id == "search"

    def test_skipped_step_routes_to_earlier_success(self, ledger):
        """Test the skipped-step fallback."""
        ledger.append(make_entry(1, {"title": "from step1"}))
        ledger.append(skipped(2))
        assert ledger.find_by_step(2).step_id == "step1"

    def test_skipped_fallback_skips_chained_skips(self, ledger):
        """Test that consecutive skipped steps route to the last real success."""
        ledger.append(make_entry(1, {"title": "real"}))
        ledger.append(skipped(2))
        ledger.append(skipped(3))
        assert ledger.find_by_step(3).step_id == "step1"

    def test_skipped_without_fallback_raises(self, ledger):
        """Test that a skipped first step has nothing to fall back on."""
        ledger.append(skipped(1))
        with pytest.raises(StepResultNotFound) as exc_info:
            ledger.find_by_step(1)
        assert exc_info.value.reason == LookupFailure.SKIPPED_WITHOUT_FALLBACK

    def test_get_returns_none_when_absent(self, ledger):
        """Test the non-raising lookup."""
        assert ledger.get(1) is None


class TestSnapshot:
    """Tests for snapshot and restore."""

    def test_round_trip_keeps_lookup_behavior(self, ledger):
        """Test that a restored ledger resolves the same records."""
        ledger.append(make_entry(1, {"title": "a"}))
        ledger.append(skipped(2))
        restored = ExecutionLedger.from_snapshot(ledger.snapshot())
        assert restored.find_by_step(2).tool_result == {"title": "a"}

    def test_from_snapshot_accepts_camel_case(self):
        """Test tolerance for host payloads using camelCase keys."""
        restored = ExecutionLedger.from_snapshot(
            [{"stepId": "step1", "stepIndex": 0, "toolName": "web", "toolResult": {"x": 1}, "success": True}]
        )
        assert restored.find_by_step(1).tool_name == "web"
