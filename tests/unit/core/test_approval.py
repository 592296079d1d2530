"""
Unit Tests for the approval gate and broker

Tests idempotent resolution, timeouts, cancellation and the approval
policies.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from stepforce.core.domain.approval import (
    ApprovalBroker,
    ApprovalGate,
    ApprovalPolicy,
    ApprovalState,
)
from stepforce.core.domain.models import ToolCall


@pytest.fixture
def tool_call():
    return ToolCall(step_id="step2", step_index=1, tool_name="send_email", args={"to": "a@b.c"}, risk="high")


class TestApprovalGate:
    """Tests for ApprovalGate."""

    @pytest.mark.asyncio
    async def test_approve_resolves_waiter(self, tool_call):
        """Test that approval wakes the waiting step."""
        gate = ApprovalGate(tool_call)
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)

        assert gate.state == ApprovalState.PENDING
        assert gate.approve() is True

        decision = await waiter
        assert decision.approved
        assert gate.is_resolved

    @pytest.mark.asyncio
    async def test_second_resolution_is_noop(self, tool_call):
        """Test that double clicks and late rejects are ignored."""
        gate = ApprovalGate(tool_call)
        assert gate.approve() is True
        assert gate.approve() is False
        assert gate.reject("too late") is False
        assert gate.cancel() is False

        decision = await gate.wait()
        assert decision.state == ApprovalState.APPROVED

    @pytest.mark.asyncio
    async def test_timeout(self, tool_call):
        """Test that an unanswered gate times out."""
        gate = ApprovalGate(tool_call, timeout=0.01)
        decision = await gate.wait()
        assert decision.state == ApprovalState.TIMED_OUT
        assert gate.approve() is False

    @pytest.mark.asyncio
    async def test_cancel_while_pending(self, tool_call):
        """Test that cancellation resolves a pending gate."""
        gate = ApprovalGate(tool_call)
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)

        assert gate.cancel("plan cancelled") is True
        decision = await waiter
        assert decision.state == ApprovalState.CANCELLED
        assert decision.reason == "plan cancelled"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_resolves_gate(self, tool_call):
        """Test that cancelling the awaiting task leaves no pending gate."""
        gate = ApprovalGate(tool_call)
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert gate.state == ApprovalState.CANCELLED


class TestApprovalBroker:
    """Tests for ApprovalBroker."""

    @pytest.mark.asyncio
    async def test_auto_approve_policy(self, tool_call):
        """Test that AUTO_APPROVE never asks the handler."""
        handler = AsyncMock()
        broker = ApprovalBroker(handler=handler, policy=ApprovalPolicy.AUTO_APPROVE)

        decision = await broker.request(tool_call)

        assert decision.approved
        handler.on_approval_requested.assert_not_called()
        assert broker.history[-1]["decision"] == "approved"

    @pytest.mark.asyncio
    async def test_auto_deny_policy(self, tool_call):
        """Test that AUTO_DENY rejects without asking."""
        broker = ApprovalBroker(policy=ApprovalPolicy.AUTO_DENY)
        decision = await broker.request(tool_call)
        assert decision.state == ApprovalState.REJECTED

    @pytest.mark.asyncio
    async def test_handler_decision(self, tool_call):
        """Test a handler that answers immediately."""
        handler = MagicMock()
        handler.on_approval_requested = AsyncMock(return_value=False)
        broker = ApprovalBroker(handler=handler)

        decision = await broker.request(tool_call)

        assert decision.state == ApprovalState.REJECTED
        handler.on_approval_requested.assert_awaited_once()
        args = handler.on_approval_requested.await_args.args
        assert args[0] is tool_call
        assert isinstance(args[1], ApprovalGate)

    @pytest.mark.asyncio
    async def test_plain_callable_handler(self, tool_call):
        """Test a synchronous function used as handler."""
        broker = ApprovalBroker(handler=lambda call, gate: True)
        decision = await broker.request(tool_call)
        assert decision.approved

    @pytest.mark.asyncio
    async def test_deferred_decision_by_call_id(self, tool_call):
        """Test a handler that returns None and a UI approving later."""
        handler = MagicMock()
        handler.on_approval_requested = AsyncMock(return_value=None)
        broker = ApprovalBroker(handler=handler)

        request = asyncio.create_task(broker.request(tool_call))
        await asyncio.sleep(0.01)

        assert tool_call.call_id in broker.pending
        assert broker.approve(tool_call.call_id) is True
        assert broker.approve(tool_call.call_id) is False

        decision = await request
        assert decision.approved
        assert broker.pending == {}
        assert len(broker.history) == 1

    @pytest.mark.asyncio
    async def test_failing_handler_cancels_gate(self, tool_call):
        """Test that a broken UI hook does not leave the step hanging."""
        handler = MagicMock()
        handler.on_approval_requested = AsyncMock(side_effect=RuntimeError("ui gone"))
        broker = ApprovalBroker(handler=handler)

        decision = await broker.request(tool_call)

        assert decision.state == ApprovalState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_all(self, tool_call):
        """Test that cancel_all resolves every open gate."""
        broker = ApprovalBroker()
        request = asyncio.create_task(broker.request(tool_call))
        await asyncio.sleep(0)

        assert broker.cancel_all("shutdown") == 1
        decision = await request
        assert decision.state == ApprovalState.CANCELLED
        assert broker.cancel_all() == 0

    def test_unknown_call_id(self):
        """Test approving a call that is not pending."""
        assert ApprovalBroker().reject("nope") is False
