"""
Tool Protocols

Boundary contracts between the plan-execution core and its collaborators.
The core treats every tool as an opaque function from arguments to a
JSON-like result.
"""

from typing import Any, Protocol

from stepforce.core.domain.approval import ApprovalGate
from stepforce.core.domain.models import ToolCall


class ToolProtocol(Protocol):
    """A single tool the executor can invoke."""

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def parameters_schema(self) -> dict[str, Any]: ...

    @property
    def requires_approval(self) -> bool: ...

    @property
    def approval_risk_level(self) -> Any: ...

    def get_approval_preview(self, **kwargs: Any) -> str: ...

    async def execute(self, **kwargs: Any) -> Any: ...


class ToolInvokerProtocol(Protocol):
    """``invoke(tool_name, args) -> JSON-like result | raises``."""

    async def invoke(self, tool_name: str, args: Any) -> Any: ...


class ApprovalHandlerProtocol(Protocol):
    """UI hook rendering a confirmation affordance for a tool call.

    Return True/False to decide immediately, or None and resolve the gate
    later through ``gate.approve()`` / ``gate.reject()``.
    """

    async def on_approval_requested(self, tool_call: ToolCall, gate: ApprovalGate) -> bool | None: ...
