"""
Step Input Normalizer

Turns a step's raw arguments (JSON text, structured values, placeholder
templates) into the concrete arguments sent to the tool.
"""

from typing import Any

import structlog

from stepforce.core.domain.errors import NormalizationError, StepforceError
from stepforce.core.domain.json_repair import parse_json_lenient
from stepforce.core.domain.placeholders import PlaceholderResolver

logger = structlog.get_logger()


class StepInputNormalizer:
    """
    Parses and resolves step inputs.

    Textual input is parsed as JSON (with repair of common planner mistakes);
    text that is not a JSON object or array is a valid instruction for some
    tools and passes through. Every string leaf is resolved through the
    PlaceholderResolver, and failures are reported with the key/index trail
    that led to them.
    """

    def __init__(self, resolver: PlaceholderResolver):
        self.resolver = resolver
        self.logger = logger.bind(component="step_normalizer")

    def normalize(self, raw_input: Any, tool_name: str) -> Any:
        """
        Produce tool arguments from a step's raw input.

        Args:
            raw_input: Raw step input (str, dict, list, scalar or None)
            tool_name: Tool the input is destined for (diagnostics only)

        Returns:
            Resolved arguments; a dict/list for structured input, the
            (placeholder-resolved) text when the input is not JSON

        Raises:
            NormalizationError: a placeholder could not be resolved
        """
        if raw_input is None:
            return {}

        structured = raw_input
        if isinstance(raw_input, str):
            structured = self._parse_text(raw_input, tool_name)

        try:
            return self._resolve(structured)
        except NormalizationError as exc:
            exc.tool_name = tool_name
            self.logger.error(
                "step_input_normalization_failed",
                tool=tool_name,
                location=exc.location,
                error=exc.message,
            )
            raise

    def _parse_text(self, text: str, tool_name: str) -> Any:
        try:
            parsed = parse_json_lenient(text)
        except ValueError:
            self.logger.warning(
                "step_input_not_json",
                tool=tool_name,
                preview=text[:200],
            )
            return text

        if isinstance(parsed, (dict, list)):
            self.logger.debug("step_input_parsed", tool=tool_name, kind=type(parsed).__name__)
            return parsed

        self.logger.warning("step_input_not_structured", tool=tool_name, kind=type(parsed).__name__)
        return text

    def _resolve(self, value: Any) -> Any:
        if isinstance(value, dict):
            resolved: dict[str, Any] = {}
            for key, item in value.items():
                try:
                    resolved[key] = self._resolve(item)
                except NormalizationError as exc:
                    raise exc.with_parent(key)
            return resolved

        if isinstance(value, list):
            items = []
            for index, item in enumerate(value):
                try:
                    items.append(self._resolve(item))
                except NormalizationError as exc:
                    raise exc.with_parent(index)
            return items

        if isinstance(value, str):
            try:
                return self.resolver.render(value).value
            except StepforceError as exc:
                raise NormalizationError(str(exc), cause=exc) from exc

        return value
