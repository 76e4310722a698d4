"""SchemaValidator — type / required / additionalProperties checks.

Used for raw frontmatter (``fmschema validate``) and for the items of
``x-frontmatter-part`` arrays. ``validate()`` stops at the first problem,
``validate_all()`` collects every problem.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fmschema.domain.errors import DomainError, ErrorKind, domain_error
from fmschema.domain.models import Schema, SchemaNode
from fmschema.domain.result import Err, Ok, Result


@dataclass(frozen=True)
class Violation:
    """One schema violation at a data path."""

    path: str
    kind: ErrorKind
    message: str

    def to_error(self) -> DomainError:
        return domain_error(self.kind, self.message, path=self.path)


def _type_matches(value: Any, type_name: str) -> bool:
    if type_name == "object":
        return isinstance(value, dict)
    if type_name == "array":
        return isinstance(value, list)
    if type_name == "string":
        return isinstance(value, str)
    if type_name == "boolean":
        return isinstance(value, bool)
    if type_name == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if type_name == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_name == "null":
        return value is None
    return True


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


class SchemaValidator:
    """Check JSON-shaped data against a :class:`Schema`."""

    def validate(self, data: Any, schema: Schema) -> Result[Any]:
        """Return ``Ok(data)`` or the first violation as an error."""
        violations = self._check_root(data, schema.definition, stop_early=True)
        if violations:
            return Err(violations[0].to_error())
        return Ok(data)

    def validate_all(self, data: Any, schema: Schema) -> list[Violation]:
        """Return every violation (empty list when valid)."""
        return self._check_root(data, schema.definition, stop_early=False)

    def _check_root(self, data: Any, node: SchemaNode, *, stop_early: bool) -> list[Violation]:
        if node.is_type("object") and not isinstance(data, dict):
            return [
                Violation(
                    path="",
                    kind=ErrorKind.INVALID_FORMAT,
                    message=f"Expected an object at the top level, got {_describe(data)}",
                )
            ]
        out: list[Violation] = []
        self._check(data, node, "", out, stop_early)
        return out

    def _check(
        self,
        value: Any,
        node: SchemaNode,
        path: str,
        out: list[Violation],
        stop_early: bool,
    ) -> None:
        types = node.types()
        if types and not any(_type_matches(value, t) for t in types):
            out.append(
                Violation(
                    path=path,
                    kind=ErrorKind.VALIDATION_ERROR,
                    message=(
                        f"Field '{path or '<root>'}' must be of type {' | '.join(types)}, "
                        f"got {_describe(value)}"
                    ),
                )
            )
            return

        if isinstance(value, dict):
            self._check_object(value, node, path, out, stop_early)
        elif isinstance(value, list) and node.items is not None:
            for index, item in enumerate(value):
                if stop_early and out:
                    return
                self._check(item, node.items, f"{path}[{index}]", out, stop_early)

    def _check_object(
        self,
        value: dict[str, Any],
        node: SchemaNode,
        path: str,
        out: list[Violation],
        stop_early: bool,
    ) -> None:
        for name in node.required:
            if name not in value:
                field = _join(path, name)
                out.append(
                    Violation(
                        path=field,
                        kind=ErrorKind.NOT_FOUND,
                        message=f"Required field '{field}' is missing",
                    )
                )
                if stop_early:
                    return

        properties = node.properties or {}
        for key, child in value.items():
            if stop_early and out:
                return
            field = _join(path, key)
            child_node = properties.get(key)
            if child_node is not None:
                self._check(child, child_node, field, out, stop_early)
                continue
            extra = node.additional_properties
            if extra is False:
                out.append(
                    Violation(
                        path=field,
                        kind=ErrorKind.VALIDATION_ERROR,
                        message=f"Additional property '{field}' is not allowed",
                    )
                )
            elif isinstance(extra, SchemaNode):
                self._check(child, extra, field, out, stop_early)
