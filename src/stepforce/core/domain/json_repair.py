"""
Lenient JSON parsing for planner-produced step inputs.

LLM planners emit "almost JSON": prose around the object, trailing commas,
an extra closing brace, raw newlines inside string literals. These helpers
repair the common cases before giving up.
"""

import json
import re
from typing import Any

import structlog

logger = structlog.get_logger()

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_EMBEDDED_JSON = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


def fix_extra_closing_braces(text: str) -> str:
    """Cut the text at the point where the top-level value is complete."""
    brace_depth = 0
    bracket_depth = 0
    in_string = False
    escape_next = False
    opener = text.lstrip()[:1]

    for position, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char == "{":
            brace_depth += 1
        elif char == "}":
            brace_depth -= 1
            if brace_depth < 0:
                return text[:position]
            if brace_depth == 0 and opener == "{":
                return text[: position + 1]
        elif char == "[":
            bracket_depth += 1
        elif char == "]":
            bracket_depth -= 1
            if bracket_depth < 0:
                return text[:position]
            if bracket_depth == 0 and opener == "[":
                return text[: position + 1]

    return text


def escape_newlines_in_strings(text: str) -> str:
    """Escape raw newlines, carriage returns and tabs inside string literals."""
    out: list[str] = []
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            out.append(char)
            escape_next = False
            continue
        if char == "\\":
            out.append(char)
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            out.append(char)
            continue
        if in_string and char == "\n":
            out.append("\\n")
        elif in_string and char == "\r":
            out.append("\\r")
        elif in_string and char == "\t":
            out.append("\\t")
        else:
            out.append(char)

    return "".join(out)


def sanitize_json_string(text: str) -> str:
    """Return a best-effort repaired version of ``text``.

    The result is not guaranteed to parse; callers still handle the error.
    """
    cleaned = text.strip()

    if not cleaned.startswith(("{", "[")):
        match = _EMBEDDED_JSON.search(cleaned)
        if match:
            cleaned = match.group(1)

    cleaned = fix_extra_closing_braces(cleaned)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _TRAILING_COMMA.sub(r"\1", cleaned)

    try:
        json.loads(cleaned)
        return cleaned
    except ValueError:
        pass

    escaped = escape_newlines_in_strings(cleaned)
    try:
        json.loads(escaped)
    except ValueError as exc:
        logger.debug("json_repair_failed", error=str(exc), preview=text[:200])
    return escaped


def parse_json_lenient(text: str) -> Any:
    """Parse ``text`` as JSON, retrying once on the sanitized form.

    Raises:
        ValueError: if neither the original nor the repaired text parses
    """
    try:
        return json.loads(text)
    except ValueError:
        return json.loads(sanitize_json_string(text))
