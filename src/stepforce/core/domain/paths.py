"""
Path navigation over JSON-like values.

Paths are dot-separated segments, each optionally followed by integer
indices: ``results[0].link``, ``matrix[1][2]``. Navigation never raises;
absence is reported with the ``MISSING`` sentinel, which is distinct from a
present ``None``.
"""

import re
from typing import Any

_INDEX_PATTERN = re.compile(r"\[(\d+)\]")
_LAST_FIELD_PATTERN = re.compile(r"^(?P<prefix>.*?)(?P<field>[^.\[\]]+)(?P<indices>(?:\[\d+\])*)$")


class _Missing:
    """Sentinel for "nothing at this path"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def tokenize_path(path: str) -> list[str]:
    """Split ``a.b[0].c`` into ``["a", "b", "0", "c"]``."""
    normalized = _INDEX_PATTERN.sub(r".\1", path)
    return [token for token in normalized.split(".") if token]


def get_path(value: Any, path: str | None) -> Any:
    """Return the value at ``path`` inside ``value`` or ``MISSING``.

    An empty path returns ``value`` itself. Dict keys are looked up as
    strings; list positions must be non-negative integers in range.
    Strings and other scalars are not indexable.
    """
    if not path:
        return value

    current = value
    for token in tokenize_path(path):
        if current is MISSING or current is None:
            return MISSING
        if isinstance(current, dict):
            current = current.get(token, MISSING)
        elif isinstance(current, list):
            if not token.isdigit():
                return MISSING
            position = int(token)
            if position >= len(current):
                return MISSING
            current = current[position]
        else:
            return MISSING
    return current


def split_last_field(path: str) -> tuple[str, str, str] | None:
    """Split a path into ``(prefix, last_field, trailing_indices)``.

    ``results[0].link`` -> ``("results[0].", "link", "")``
    ``data.items[2]``   -> ``("data.", "items", "[2]")``
    """
    match = _LAST_FIELD_PATTERN.match(path)
    if not match:
        return None
    return match.group("prefix"), match.group("field"), match.group("indices")


def available_fields(value: Any, prefix: str = "", max_depth: int = 3, _depth: int = 0) -> list[str]:
    """List dot-paths present in ``value``, up to ``max_depth`` levels.

    Arrays contribute ``key[0]`` followed by the fields of their first
    element, which is what a placeholder author most likely wants.
    """
    fields: list[str] = []
    if _depth >= max_depth or not isinstance(value, dict):
        return fields

    for key, child in value.items():
        full_path = f"{prefix}.{key}" if prefix else str(key)
        fields.append(full_path)

        if isinstance(child, list) and child:
            first = f"{full_path}[0]"
            fields.append(first)
            fields.extend(available_fields(child[0], first, max_depth, _depth + 1))
        elif isinstance(child, dict):
            fields.extend(available_fields(child, full_path, max_depth, _depth + 1))

    return fields
