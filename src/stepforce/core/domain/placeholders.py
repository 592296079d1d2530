"""
Step Placeholders

A tiny interpreter for ``{{step<N>[.<source>][.<path>]}}`` expressions that
wire the output of one plan step into the arguments of a later one.

Supported forms:
    {{step2}}                      whole (unwrapped) result of step 2
    {{step2.title}}                direct field access
    {{step2.output.results[0]}}    explicit source, backward compatible
    {{step2.result.items[1].url}}  explicit source, same as output
    {{step2.tool_result.raw}}      raw tool result, no unwrapping

Tools are heterogeneous and loosely typed, so resolution applies a fixed,
ordered list of heuristics (result unwrapping, JSON decoding, prefix
stripping, content and field aliases, argument fallback). The order below is
part of the behavior and must not be rearranged.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Union

import structlog

from stepforce.core.domain.errors import PlaceholderNotFound, StepResultNotFound
from stepforce.core.domain.ledger import ExecutionLedger
from stepforce.core.domain.paths import MISSING, available_fields, get_path, split_last_field

logger = structlog.get_logger()

# Captures (stepNum, part1, part2); part1 may carry trailing indices.
PLACEHOLDER_PATTERN = re.compile(
    r"\{\{step(\d+)(?:\.([^.{}\[\]]+(?:\[\d+\])*))?(?:\.([^{}]+?))?\}\}"
)

EXPLICIT_SOURCES = ("output", "result", "tool_result")

DEFAULT_ALIAS_GROUPS: tuple[tuple[str, ...], ...] = (
    ("link", "href", "url"),
    ("content", "text", "body", "raw_content"),
    ("title", "name", "heading"),
)

CONTENT_FALLBACK_PATHS = ("raw_content", "results[0].raw_content", "results[0].content")


# ===== AST =====


@dataclass(frozen=True)
class DirectAccess:
    """``{{stepN.path}}``: the first segment is a field of the unwrapped result."""

    step: int
    path: str | None
    text: str


@dataclass(frozen=True)
class ExplicitSource:
    """``{{stepN.<output|result|tool_result>.path}}``."""

    step: int
    source: str
    path: str | None
    text: str


Placeholder = Union[DirectAccess, ExplicitSource]


@dataclass(frozen=True)
class RawValue:
    """The whole string was one placeholder; ``value`` keeps its native type."""

    value: Any


@dataclass(frozen=True)
class RenderedString:
    """Placeholders were interpolated into surrounding text."""

    value: str


Rendered = Union[RawValue, RenderedString]


def parse_match(match: re.Match) -> Placeholder:
    step = int(match.group(1))
    first = match.group(2)
    rest = match.group(3)

    if first in EXPLICIT_SOURCES:
        return ExplicitSource(step=step, source=first, path=rest, text=match.group(0))

    path = first
    if first and rest:
        path = f"{first}.{rest}"
    return DirectAccess(step=step, path=path, text=match.group(0))


def parse_placeholder(text: str) -> Placeholder | None:
    """Parse a string that is exactly one placeholder, else return None."""
    match = PLACEHOLDER_PATTERN.fullmatch(text.strip())
    return parse_match(match) if match else None


def contains_placeholders(text: Any) -> bool:
    if not isinstance(text, str) or not text:
        return False
    return PLACEHOLDER_PATTERN.search(text) is not None


def extract_placeholders(text: Any) -> list[str]:
    if not isinstance(text, str) or not text:
        return []
    return [match.group(0) for match in PLACEHOLDER_PATTERN.finditer(text)]


def referenced_steps(value: Any) -> list[int]:
    """Sorted, de-duplicated step numbers referenced anywhere in ``value``."""
    found: set[int] = set()

    def _walk(item: Any) -> None:
        if isinstance(item, str):
            found.update(int(m.group(1)) for m in PLACEHOLDER_PATTERN.finditer(item))
        elif isinstance(item, dict):
            for child in item.values():
                _walk(child)
        elif isinstance(item, list):
            for child in item:
                _walk(child)

    _walk(value)
    return sorted(found)


def stringify_value(value: Any) -> str:
    """Render a resolved value for interpolation into text."""
    if isinstance(value, str):
        return value
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def build_alias_table(groups: tuple[tuple[str, ...], ...]) -> dict[str, tuple[str, ...]]:
    """Each field maps to the other members of its group, in group order."""
    table: dict[str, tuple[str, ...]] = {}
    for group in groups:
        for name in group:
            table.setdefault(name, tuple(alias for alias in group if alias != name))
    return table


def unwrap_tool_result(raw: Any) -> Any:
    """
    Peel transport wrappers off a tool result before field lookup.

    1. ``{"result": X}`` -> X
    2. JSON text -> decoded value (plain text is kept as is)
    3. ``{"content": [{"type": "text", "text": "<json>"}]}`` -> decoded text
    """
    value = raw
    if isinstance(value, dict) and value.get("result") is not None:
        value = value["result"]

    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            pass

    if isinstance(value, dict):
        content = value.get("content")
        if isinstance(content, list) and content and isinstance(content[0], dict):
            first = content[0]
            if first.get("type") == "text" and isinstance(first.get("text"), str):
                try:
                    value = json.loads(first["text"])
                except ValueError:
                    pass

    return value


class PlaceholderResolver:
    """
    Resolves placeholders against an ExecutionLedger.

    Only records already in the ledger are visible, so a forward reference
    fails exactly like a reference to a step that never ran.
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        alias_groups: tuple[tuple[str, ...], ...] = DEFAULT_ALIAS_GROUPS,
    ):
        self.ledger = ledger
        self.aliases = build_alias_table(alias_groups)
        self.logger = logger.bind(component="placeholder_resolver")

    def resolve(self, value: Any) -> Any:
        """Resolve every placeholder in an object, array, string or scalar.

        Objects and arrays are rebuilt with keys and order preserved.

        Raises:
            StepResultNotFound: a referenced step has no usable record
            PlaceholderNotFound: the step exists but the field does not
        """
        if isinstance(value, dict):
            return {key: self.resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, str):
            return self.render(value).value
        return value

    def render(self, text: str) -> Rendered:
        """Resolve a string to a native value or an interpolated string."""
        matches = list(PLACEHOLDER_PATTERN.finditer(text))
        if not matches:
            return RenderedString(text)

        if len(matches) == 1 and text.strip() == matches[0].group(0):
            return RawValue(self.resolve_reference(parse_match(matches[0])))

        self.logger.debug("interpolating_placeholders", count=len(matches))
        rendered = PLACEHOLDER_PATTERN.sub(
            lambda match: stringify_value(self.resolve_reference(parse_match(match))),
            text,
        )
        return RenderedString(rendered)

    def resolve_reference(self, ref: Placeholder) -> Any:
        """Resolve a single parsed placeholder to its value."""
        try:
            entry = self.ledger.find_by_step(ref.step)
        except StepResultNotFound as exc:
            self.logger.error("placeholder_step_missing", placeholder=ref.text, reason=exc.reason.value)
            raise StepResultNotFound(ref.step, exc.reason, placeholder=ref.text) from exc

        raw = entry.tool_result
        unwrapped = unwrap_tool_result(raw)
        value = MISSING

        if isinstance(ref, ExplicitSource) and ref.source == "tool_result":
            if raw is not None:
                value = get_path(raw, ref.path)
        elif raw is not None:
            value = self._navigate_result(unwrapped, ref.path)

        if value is MISSING and entry.tool_args is not None:
            value = get_path(entry.tool_args, ref.path)

        if value is MISSING:
            fields = available_fields(unwrapped)
            self.logger.error(
                "placeholder_resolution_failed",
                placeholder=ref.text,
                requested_field=ref.path,
                step_id=entry.step_id,
                tool_name=entry.tool_name,
                available_fields=fields[:10],
                total_field_count=len(fields),
            )
            raise PlaceholderNotFound(
                placeholder=ref.text,
                step_id=entry.step_id,
                tool_name=entry.tool_name,
                path=ref.path,
                available_fields=fields,
            )

        self.logger.debug("placeholder_resolved", placeholder=ref.text, step_id=entry.step_id)
        return value

    def _navigate_result(self, data: Any, path: str | None) -> Any:
        if not path:
            return data

        # Authors often over-qualify: {{step1.result.title}} on {"title": ...}
        if path.startswith("result.") and not (isinstance(data, dict) and "result" in data):
            path = path[len("result."):]

        value = get_path(data, path)

        if value is MISSING and path == "content":
            for alternative in CONTENT_FALLBACK_PATHS:
                value = get_path(data, alternative)
                if value is not MISSING:
                    break

        if value is MISSING:
            value = self._navigate_aliases(data, path)

        return value

    def _navigate_aliases(self, data: Any, path: str) -> Any:
        parts = split_last_field(path)
        if parts is None:
            return MISSING

        prefix, field, indices = parts
        for alias in self.aliases.get(field, ()):
            value = get_path(data, f"{prefix}{alias}{indices}")
            if value is not MISSING:
                self.logger.debug("placeholder_alias_used", field=field, alias=alias)
                return value
        return MISSING
