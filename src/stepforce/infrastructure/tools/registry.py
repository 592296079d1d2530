"""
Tool Registry

Name-indexed collection of tools implementing the ToolInvokerProtocol the
executor consumes. Besides dispatch it validates arguments against each
tool's parameter schema and maps free-text step inputs onto a parameter.
"""

import re
from typing import Any

import structlog

from stepforce.core.domain.errors import ToolNotFoundError, ToolValidationError
from stepforce.infrastructure.tools.base import Tool

logger = structlog.get_logger()

_KEY_VALUE_PAIR = re.compile(
    r"([a-zA-Z_][a-zA-Z0-9_]*)\s*:\s*([^,]+?)(?=,\s*[a-zA-Z_][a-zA-Z0-9_]*\s*:|$)"
)
COMMON_PARAMETER_NAMES = ("query", "text", "message", "input", "value", "data")


def _coerce_number(text: str) -> Any:
    for cast in (int, float):
        try:
            return cast(text)
        except ValueError:
            continue
    return text


class ToolRegistry:
    """Dispatches tool calls by name."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        self.logger = logger.bind(component="tool_registry")
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            self.logger.warning("tool_replaced", tool=tool.name)
        self._tools[tool.name] = tool

    def get(self, tool_name: str) -> Tool:
        tool = self._tools.get(tool_name)
        if tool is None:
            raise ToolNotFoundError(tool_name, list(self._tools))
        return tool

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._tools

    @property
    def names(self) -> list[str]:
        return sorted(self._tools)

    @property
    def tools(self) -> dict[str, Tool]:
        return dict(self._tools)

    def requires_approval(self, tool_name: str) -> bool:
        return self.get(tool_name).requires_approval

    def describe_call(self, tool_name: str, args: Any) -> tuple[str, str]:
        """Return ``(risk, preview)`` for an approval prompt."""
        tool = self.get(tool_name)
        preview_args = args if isinstance(args, dict) else {"input": args}
        return tool.approval_risk_level.value, tool.get_approval_preview(**preview_args)

    def validate_args(self, tool_name: str, args: dict[str, Any]) -> None:
        """
        Check arguments against the tool's parameter schema.

        Raises:
            ToolNotFoundError: unknown tool
            ToolValidationError: missing required or unknown parameters
        """
        tool = self.get(tool_name)
        schema = tool.parameters_schema or {}
        properties = schema.get("properties") or {}
        required = schema.get("required") or []

        missing = [name for name in required if name not in args]
        if missing:
            described = []
            for name in missing:
                desc = (properties.get(name) or {}).get("description")
                described.append(f"{name} ({desc})" if desc else name)
            raise ToolValidationError(
                tool_name,
                f"Missing required parameters: {', '.join(missing)}",
                suggestion=f"Provide: {', '.join(described)}",
            )

        if properties and not tool.accepts_any_params:
            unknown = [name for name in args if name not in properties]
            if unknown:
                raise ToolValidationError(
                    tool_name,
                    f"Unknown parameters: {', '.join(unknown)}",
                    suggestion=f"Supported parameters: {', '.join(properties)}",
                )

    def map_text_input(self, tool_name: str, text: str) -> dict[str, Any]:
        """
        Map a free-text step input onto the tool's parameters.

        Strategies, in order:
        1. ``key: value, key2: value2`` when every key is a known parameter
        2. the single required parameter
        3. a common parameter name (query, text, message, ...)
        4. the first string-typed required parameter, else the first required
        5. ``{"input": text}``
        """
        tool = self._tools.get(tool_name)
        schema = tool.parameters_schema if tool else {}
        properties = (schema or {}).get("properties") or {}
        required = (schema or {}).get("required") or []

        if not properties:
            self.logger.warning("no_schema_for_text_input", tool=tool_name)
            return {"input": text}

        pairs = _KEY_VALUE_PAIR.findall(text)
        if pairs:
            parsed = {key: _coerce_number(value.strip()) for key, value in pairs}
            if all(key in properties for key in parsed):
                self.logger.debug("text_input_key_value_pairs", tool=tool_name, keys=list(parsed))
                return parsed

        if len(required) == 1:
            return {required[0]: text}

        for name in COMMON_PARAMETER_NAMES:
            if name in properties:
                return {name: text}

        if len(required) > 1:
            for name in required:
                param_type = (properties.get(name) or {}).get("type")
                if param_type in (None, "string"):
                    return {name: text}
            return {required[0]: text}

        return {"input": text}

    async def invoke(self, tool_name: str, args: Any) -> Any:
        """Execute a tool with validated keyword arguments."""
        tool = self.get(tool_name)

        if isinstance(args, str):
            args = self.map_text_input(tool_name, args)
        elif args is None:
            args = {}
        elif not isinstance(args, dict):
            raise ToolValidationError(
                tool_name,
                f"Arguments must be an object, got {type(args).__name__}",
            )

        self.validate_args(tool_name, args)
        self.logger.debug("tool_invoke", tool=tool_name, params=list(args))
        return await tool.execute(**args)
