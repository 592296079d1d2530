"""Builtin tools available to every registry created by the service layer."""

import asyncio
from typing import Any, Dict

from stepforce.infrastructure.tools.base import ApprovalRiskLevel, Tool


class EchoTool(Tool):
    """Returns its arguments unchanged. Useful for wiring and dry runs."""

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Return the given arguments as the tool result"

    @property
    def parameters_schema(self) -> Dict[str, Any]:
        return {"type": "object", "properties": {}, "additionalProperties": True}

    async def execute(self, **kwargs) -> Dict[str, Any]:
        return {"success": True, **kwargs}


class SleepTool(Tool):
    """Cooperative delay; other coroutines keep running meanwhile."""

    @property
    def name(self) -> str:
        return "sleep"

    @property
    def description(self) -> str:
        return "Wait for the given number of seconds"

    async def execute(self, seconds: float = 1.0) -> Dict[str, Any]:
        seconds = max(0.0, float(seconds))
        await asyncio.sleep(seconds)
        return {"success": True, "slept": seconds}


class ConfirmedEchoTool(EchoTool):
    """Echo that must be approved before it runs."""

    @property
    def name(self) -> str:
        return "confirmed_echo"

    @property
    def description(self) -> str:
        return "Return the given arguments after human approval"

    @property
    def requires_approval(self) -> bool:
        return True

    @property
    def approval_risk_level(self) -> ApprovalRiskLevel:
        return ApprovalRiskLevel.HIGH


def builtin_tools() -> list[Tool]:
    return [EchoTool(), SleepTool(), ConfirmedEchoTool()]
