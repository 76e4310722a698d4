"""Strict path resolution over JSON-shaped values.

Paths are ``.``-separated. A segment made of digits indexes into a list,
any other segment looks up a dict key. Resolution never invents values:
a missing key, an out-of-range index, or traversal through a scalar
yields :data:`UNRESOLVED` rather than ``None``.
"""

from __future__ import annotations

import re
from typing import Any, Final

from fmschema.domain.errors import ErrorKind
from fmschema.domain.result import Ok, Result, fail


class _Unresolved:
    """Sentinel type for a path that does not exist in the value."""

    _instance: _Unresolved | None = None

    def __new__(cls) -> _Unresolved:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


UNRESOLVED: Final = _Unresolved()

# Full-match placeholder grammar: ``{{path}}`` or ``{path}``; the path holds
# no whitespace, so prose such as ``{see notes}`` stays literal.
_DOUBLE_BRACE = re.compile(r"^\{\{\s*([^{}\s]+)\s*\}\}$")
_SINGLE_BRACE = re.compile(r"^\{\s*([^{}\s]+)\s*\}$")

# Array projection grammar used by ``x-derived-from``: ``a.b[].c``.
_PROJECTION = re.compile(r"^(?P<array>[^\[\]]+)\[\](?:\.(?P<field>[^\[\]]+))?$")


def split_path(path: str) -> list[str] | None:
    """Split *path* into segments, or None when it has an empty segment."""
    if not path:
        return None
    parts = path.split(".")
    if any(part == "" for part in parts):
        return None
    return parts


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, list):
        if not (segment.isascii() and segment.isdigit()):
            return UNRESOLVED
        index = int(segment)
        if index >= len(current):
            return UNRESOLVED
        return current[index]
    if isinstance(current, dict):
        if segment not in current:
            return UNRESOLVED
        return current[segment]
    return UNRESOLVED


def resolve(value: Any, path: str) -> Any:
    """Resolve *path* against *value*, returning :data:`UNRESOLVED` on any miss."""
    parts = split_path(path)
    if parts is None:
        return UNRESOLVED
    current = value
    for segment in parts:
        current = _step(current, segment)
        if current is UNRESOLVED:
            return UNRESOLVED
    return current


def resolve_result(value: Any, path: str) -> Result[Any]:
    """Like :func:`resolve` but reports the first failing segment as ``NotFound``."""
    parts = split_path(path)
    if parts is None:
        return fail(ErrorKind.NOT_FOUND, f"Invalid path: {path!r}", path=path)
    current = value
    for depth, segment in enumerate(parts):
        current = _step(current, segment)
        if current is UNRESOLVED:
            walked = ".".join(parts[: depth + 1])
            return fail(
                ErrorKind.NOT_FOUND,
                f"Path '{path}' could not be resolved at '{walked}'",
                path=path,
                segment=segment,
            )
    return Ok(current)


def parse_placeholder(text: str) -> str | None:
    """Return the path of a full-match placeholder, else None.

    Examples:
        >>> parse_placeholder("{{title}}")
        'title'
        >>> parse_placeholder("{ meta.author }")
        'meta.author'
        >>> parse_placeholder("Hello {{name}}") is None
        True
    """
    match = _DOUBLE_BRACE.match(text) or _SINGLE_BRACE.match(text)
    if match is None:
        return None
    return match.group(1)


def parse_array_projection(expression: str) -> tuple[str, str | None] | None:
    """Split ``commands[].c1`` into ``("commands", "c1")``.

    ``items[]`` yields ``("items", None)`` (the elements themselves).
    Returns None when the expression has no ``[]`` projection.
    """
    match = _PROJECTION.match(expression.strip())
    if match is None:
        return None
    array_path = match.group("array")
    if split_path(array_path) is None:
        return None
    field = match.group("field")
    if field is not None and split_path(field) is None:
        return None
    return array_path, field


def set_path(target: dict[str, Any], path: str, value: Any) -> bool:
    """Set *value* at dotted *path* inside *target*, creating dicts as needed.

    Returns False when an intermediate segment already holds a non-dict.
    """
    parts = split_path(path)
    if parts is None:
        return False
    current = target
    for segment in parts[:-1]:
        nxt = current.setdefault(segment, {})
        if not isinstance(nxt, dict):
            return False
        current = nxt
    current[parts[-1]] = value
    return True
