"""Schema directive interpretation: ``$ref`` resolution and ``x-*`` directives.

Two passes run over the resolved schema's properties once the aggregated
structure exists:

1. **Arrays**. ``x-frontmatter-part`` fans out one element per document;
   ``x-jmespath-filter`` is evaluated once over the whole array and keeps
   what it selects; elements it cannot be evaluated against are dropped
   with a warning.
2. **Derivations**. ``x-derived-from`` projects a field out of a final
   array; ``x-derived-unique`` deduplicates and sorts the projection.

INVARIANT: derivations run strictly after every array is final.
Documents that cannot produce a fan-out element are skipped with a
warning; the batch itself only fails on schema or template errors.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import jmespath
import structlog
from jmespath.exceptions import JMESPathError, JMESPathTypeError

from fmschema.domain.errors import DomainError, ErrorKind, domain_error
from fmschema.domain.mapper import NoSchema, TemplateMapper, ValidationMode, WithSchema
from fmschema.domain.models import AnalysisResult, Schema, SchemaNode, Template
from fmschema.domain.paths import UNRESOLVED, parse_array_projection, resolve
from fmschema.domain.result import Err, Ok, Result, fail

log = structlog.get_logger(__name__)

type TemplateLoader = Callable[[str], Result[Template]]

# Called with the position of an element a filter could not evaluate, and why.
type Excluded = Callable[[int, str], None]

_DEFINITION_KEYS = ("definitions", "$defs")


# ---------------------------------------------------------------------------
# $ref resolution
# ---------------------------------------------------------------------------


class _RefFailure(Exception):
    def __init__(self, error: DomainError) -> None:
        super().__init__(error.message)
        self.error = error


@dataclass(frozen=True)
class RefResolution:
    """A schema with every local ``$ref`` substituted."""

    schema: dict[str, Any]


class RefResolver:
    """Substitute ``{"$ref": "#/definitions/X"}`` nodes by their targets.

    Sibling keys next to ``$ref`` override the referenced subtree, so a
    property can reuse a definition and still attach its own directives.
    Definition blocks are carried over verbatim; only references reachable
    from the root are expanded.
    """

    def resolve(self, raw: dict[str, Any]) -> Result[RefResolution]:
        referenced: set[str] = set()
        try:
            resolved = self._resolve(raw, raw, (), referenced)
        except _RefFailure as exc:
            return Err(exc.error)
        except RecursionError:
            return fail(
                ErrorKind.SCHEMA_RESOLUTION_ERROR,
                "Schema is nested too deeply to resolve",
            )
        log.debug("schema.refs_resolved", count=len(referenced))
        return Ok(RefResolution(schema=resolved))

    def resolve_schema(self, schema: Schema) -> Result[Schema]:
        """Resolve *schema*'s raw definition and re-parse it."""
        resolution = self.resolve(schema.raw)
        if not resolution.ok:
            return resolution
        return Schema.create(resolution.data.schema, path=schema.path)

    def _resolve(
        self,
        node: Any,
        root: dict[str, Any],
        stack: tuple[str, ...],
        referenced: set[str],
    ) -> Any:
        if isinstance(node, list):
            return [self._resolve(item, root, stack, referenced) for item in node]
        if not isinstance(node, dict):
            return node

        if "$ref" not in node:
            out: dict[str, Any] = {}
            for key, value in node.items():
                if key in _DEFINITION_KEYS:
                    out[key] = copy.deepcopy(value)
                else:
                    out[key] = self._resolve(value, root, stack, referenced)
            return out

        ref = node["$ref"]
        if not isinstance(ref, str) or not ref.startswith("#/"):
            raise _RefFailure(
                domain_error(
                    ErrorKind.SCHEMA_RESOLUTION_ERROR,
                    f"Unsupported $ref: {ref!r} (only local '#/...' references are resolved)",
                    ref=str(ref),
                )
            )
        if ref in stack:
            chain = " -> ".join((*stack, ref))
            raise _RefFailure(
                domain_error(
                    ErrorKind.SCHEMA_RESOLUTION_ERROR,
                    f"Circular $ref detected: {chain}",
                    ref=ref,
                    chain=list((*stack, ref)),
                )
            )

        target = _lookup_pointer(root, ref)
        if target is UNRESOLVED:
            raise _RefFailure(
                domain_error(
                    ErrorKind.SCHEMA_RESOLUTION_ERROR, f"Unresolvable $ref: {ref}", ref=ref
                )
            )
        if not isinstance(target, dict):
            raise _RefFailure(
                domain_error(
                    ErrorKind.SCHEMA_RESOLUTION_ERROR,
                    f"Referenced schema {ref} must be an object",
                    ref=ref,
                )
            )

        referenced.add(ref)
        expanded = self._resolve(target, root, (*stack, ref), referenced)
        siblings = {k: v for k, v in node.items() if k != "$ref"}
        overrides = self._resolve(siblings, root, stack, referenced)
        return {**expanded, **overrides}


def _lookup_pointer(root: dict[str, Any], ref: str) -> Any:
    """Follow a JSON pointer fragment (``#/a/b``) through *root*."""
    current: Any = root
    for raw_part in ref[2:].split("/"):
        part = raw_part.replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return UNRESOLVED
    return current


# ---------------------------------------------------------------------------
# Directive interpretation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DirectiveOutcome:
    """Structure after directives, plus warnings for skipped documents."""

    structure: dict[str, Any]
    warnings: tuple[str, ...] = field(default_factory=tuple)


def iter_properties(
    node: SchemaNode, prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], SchemaNode]]:
    """Yield ``(key_path, node)`` for every property, depth-first, declaration order.

    Descends into nested object ``properties``; array ``items`` are not
    part of the output's key space and are not traversed.
    """
    for key, child in (node.properties or {}).items():
        path = (*prefix, key)
        yield path, child
        if child.properties:
            yield from iter_properties(child, path)


def find_frontmatter_part(node: SchemaNode) -> tuple[tuple[str, ...], SchemaNode] | None:
    """Return the first ``x-frontmatter-part`` property, if any."""
    for path, child in iter_properties(node):
        if child.directives.frontmatter_part:
            return path, child
    return None


def _dotted(path: tuple[str, ...]) -> str:
    return ".".join(path)


def _get(structure: dict[str, Any], path: tuple[str, ...]) -> Any:
    current: Any = structure
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return UNRESOLVED
        current = current[key]
    return current


def _assign(structure: dict[str, Any], path: tuple[str, ...], value: Any) -> Result[None]:
    current = structure
    for key in path[:-1]:
        nxt = current.setdefault(key, {})
        if not isinstance(nxt, dict):
            return fail(
                ErrorKind.INVALID_FORMAT,
                f"Cannot assign '{_dotted(path)}': '{key}' is not an object",
                path=_dotted(path),
            )
        current = nxt
    current[path[-1]] = value
    return Ok(None)


def _locate_array(output: dict[str, Any], parent: tuple[str, ...], array_path: str) -> Any:
    """Resolve *array_path* in the enclosing object first, then from the root."""
    if parent:
        enclosing = _get(output, parent)
        if isinstance(enclosing, dict):
            found = resolve(enclosing, array_path)
            if isinstance(found, list):
                return found
    return resolve(output, array_path)


def _unique_key(value: Any) -> tuple[str, str]:
    return type(value).__name__, json.dumps(value, sort_keys=True, default=str)


def _sort_key(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def unique_sorted(values: Sequence[Any]) -> list[Any]:
    """Deduplicate (first occurrence wins) and sort by string coercion (stable)."""
    seen: set[tuple[str, str]] = set()
    unique: list[Any] = []
    for value in values:
        key = _unique_key(value)
        if key in seen:
            continue
        seen.add(key)
        unique.append(value)
    return sorted(unique, key=_sort_key)


class JMESPathFilter:
    """Compiled ``x-jmespath-filter`` expression, evaluated over a whole array.

    An element the expression cannot be evaluated against (``contains()`` on
    a missing field, say) is dropped and reported through ``excluded``
    instead of failing the array.
    """

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self._compiled = jmespath.compile(expression)

    @classmethod
    def create(cls, expression: str) -> Result[JMESPathFilter]:
        try:
            return Ok(cls(expression))
        except JMESPathError as exc:
            return fail(
                ErrorKind.INVALID_SCHEMA,
                f"Invalid JMESPath expression '{expression}': {exc}",
                expression=expression,
            )

    def _failed(self, exc: JMESPathError) -> Err:
        return fail(
            ErrorKind.INVALID_SCHEMA,
            f"JMESPath filter '{self.expression}' failed: {exc}",
            expression=self.expression,
        )

    def _evaluable(self, elements: list[Any], excluded: Excluded | None) -> list[Any]:
        kept: list[Any] = []
        for index, element in enumerate(elements):
            try:
                self._compiled.search([element])
            except JMESPathTypeError as exc:
                if excluded is not None:
                    excluded(index, str(exc))
                continue
            kept.append(element)
        return kept

    def apply(
        self, elements: list[Any], *, excluded: Excluded | None = None
    ) -> Result[list[Any]]:
        """Evaluate the expression over *elements*; the result must be an array."""
        try:
            filtered = self._compiled.search(elements)
        except JMESPathTypeError:
            try:
                filtered = self._compiled.search(self._evaluable(elements, excluded))
            except JMESPathError as exc:
                return self._failed(exc)
        except JMESPathError as exc:
            return self._failed(exc)
        if filtered is None:
            return Ok([])
        if not isinstance(filtered, list):
            return fail(
                ErrorKind.INVALID_SCHEMA,
                f"JMESPath filter '{self.expression}' must produce an array, "
                f"got {type(filtered).__name__}",
                expression=self.expression,
            )
        return Ok(filtered)

    def select(
        self, payloads: list[Any], *, excluded: Excluded | None = None
    ) -> Result[list[int]]:
        """Positions of the *payloads* the expression keeps, in its output order.

        Payloads are matched by identity, so the expression may filter, slice
        or reorder them but not project new values out of them.
        """
        filtered = self.apply(payloads, excluded=excluded)
        if not filtered.ok:
            return filtered
        positions = {id(payload): index for index, payload in enumerate(payloads)}
        chosen: list[int] = []
        for value in filtered.data:
            index = positions.get(id(value))
            if index is None:
                return fail(
                    ErrorKind.INVALID_SCHEMA,
                    f"JMESPath filter '{self.expression}' must select whole documents, "
                    "not project values out of them",
                    expression=self.expression,
                )
            if index not in chosen:
                chosen.append(index)
        return Ok(chosen)


class DirectiveInterpreter:
    """Evaluate ``x-*`` directives over an aggregated structure.

    Usage::

        outcome = DirectiveInterpreter().apply(
            aggregated.get_structure(), schema, results, template_loader=loader
        )
    """

    def __init__(self, mapper: TemplateMapper | None = None) -> None:
        self._mapper = mapper or TemplateMapper()

    def apply(
        self,
        structure: dict[str, Any],
        schema: Schema,
        results: Sequence[AnalysisResult],
        *,
        template_loader: TemplateLoader | None = None,
    ) -> Result[DirectiveOutcome]:
        output = copy.deepcopy(structure)
        warnings: list[str] = []
        root = schema.definition

        for path, node in iter_properties(root):
            if node.directives.frontmatter_part:
                step = self._fan_out(output, path, node, schema, results, template_loader, warnings)
            elif node.directives.jmespath_filter:
                step = self._filter_existing(output, path, node, warnings)
            else:
                continue
            if not step.ok:
                return step

        for path, node in iter_properties(root):
            if node.directives.derived_from:
                step = self._derive(output, path, node, warnings)
                if not step.ok:
                    return step

        return Ok(DirectiveOutcome(structure=output, warnings=tuple(warnings)))

    # -- pass 1: arrays ----------------------------------------------------

    def _item_template_name(self, node: SchemaNode) -> str | None:
        if node.directives.template:
            return node.directives.template
        if node.directives.template_items:
            return node.directives.template_items
        if node.items is not None and node.items.directives.template:
            return node.items.directives.template
        return None

    def _fan_out(
        self,
        output: dict[str, Any],
        path: tuple[str, ...],
        node: SchemaNode,
        schema: Schema,
        results: Sequence[AnalysisResult],
        template_loader: TemplateLoader | None,
        warnings: list[str],
    ) -> Result[None]:
        name = _dotted(path)
        if not node.is_type("array"):
            return fail(
                ErrorKind.INVALID_SCHEMA,
                f"x-frontmatter-part property '{name}' must be of type array",
                property=name,
            )

        template: Template | None = None
        template_name = self._item_template_name(node)
        if template_name is not None:
            if template_loader is None:
                return fail(
                    ErrorKind.INVALID_SCHEMA,
                    f"Property '{name}' declares template '{template_name}' "
                    "but no template loader is available",
                    property=name,
                )
            loaded = template_loader(template_name)
            if not loaded.ok:
                return loaded
            template = loaded.data

        selector: JMESPathFilter | None = None
        if node.directives.jmespath_filter:
            compiled = JMESPathFilter.create(node.directives.jmespath_filter)
            if not compiled.ok:
                return compiled
            selector = compiled.data

        items = node.items
        mode: ValidationMode = NoSchema()
        if items is not None and items.properties:
            mode = WithSchema(Schema(path=schema.path, definition=items))

        selected: list[AnalysisResult] = list(results)
        if selector is not None:
            # Shallow copies give every document a distinct identity to match on.
            payloads = [copy.copy(r.extracted.data) for r in results]

            def excluded(index: int, reason: str) -> None:
                source = results[index].document.path
                warnings.append(f"{source}: excluded from '{name}' by filter: {reason}")

            chosen = selector.select(payloads, excluded=excluded)
            if not chosen.ok:
                return chosen
            selected = [results[i] for i in chosen.data]

        elements: list[Any] = []
        for result in selected:
            source = result.document.path
            element = self._element_for(result, template, mode, items)
            if not element.ok:
                warnings.append(f"{source}: skipped for '{name}': {element.error.message}")
                continue
            elements.append(element.data)

        log.debug(
            "directives.fan_out",
            property=name,
            documents=len(results),
            elements=len(elements),
        )
        return _assign(output, path, elements)

    def _element_for(
        self,
        result: AnalysisResult,
        template: Template | None,
        mode: ValidationMode,
        items: SchemaNode | None,
    ) -> Result[Any]:
        data = result.extracted.data
        if template is not None:
            mapped = self._mapper.map(result.extracted, template, mode)
            if not mapped.ok:
                return mapped
            element: Any = mapped.data.data
        elif items is not None and items.properties and isinstance(data, dict):
            element = {k: copy.deepcopy(data[k]) for k in items.properties if k in data}
        else:
            element = copy.deepcopy(data)

        if items is not None and items.required:
            if not isinstance(element, dict):
                return fail(ErrorKind.VALIDATION_ERROR, "element is not an object")
            missing = [k for k in items.required if k not in element]
            if missing:
                return fail(
                    ErrorKind.NOT_FOUND,
                    f"missing required field(s): {', '.join(missing)}",
                    missing=missing,
                )
        return Ok(element)

    def _filter_existing(
        self,
        output: dict[str, Any],
        path: tuple[str, ...],
        node: SchemaNode,
        warnings: list[str],
    ) -> Result[None]:
        name = _dotted(path)
        current = _get(output, path)
        if current is UNRESOLVED or not isinstance(current, list):
            return Ok(None)
        compiled = JMESPathFilter.create(node.directives.jmespath_filter or "")
        if not compiled.ok:
            return compiled
        filtered = compiled.data.apply(
            current,
            excluded=lambda index, reason: warnings.append(
                f"{name}[{index}]: excluded by filter: {reason}"
            ),
        )
        if not filtered.ok:
            return filtered
        log.debug(
            "directives.filter",
            property=name,
            before=len(current),
            after=len(filtered.data),
        )
        return _assign(output, path, filtered.data)

    # -- pass 2: derivations -----------------------------------------------

    def _derive(
        self,
        output: dict[str, Any],
        path: tuple[str, ...],
        node: SchemaNode,
        warnings: list[str],
    ) -> Result[None]:
        name = _dotted(path)
        expression = node.directives.derived_from or ""
        projection = parse_array_projection(expression)
        if projection is None:
            return fail(
                ErrorKind.INVALID_SCHEMA,
                f"x-derived-from on '{name}' must look like 'array[].field', got '{expression}'",
                property=name,
            )
        array_path, field_path = projection

        source = _locate_array(output, path[:-1], array_path)
        if source is UNRESOLVED or not isinstance(source, list):
            warnings.append(
                f"x-derived-from '{expression}' on '{name}': no array at '{array_path}'"
            )
            source = []

        values: list[Any] = []
        for element in source:
            value = element if field_path is None else resolve(element, field_path)
            if value is UNRESOLVED or value is None:
                continue
            if isinstance(value, list):
                values.extend(copy.deepcopy(v) for v in value if v is not None)
            else:
                values.append(copy.deepcopy(value))

        if node.directives.derived_unique:
            values = unique_sorted(values)

        log.debug("directives.derived", property=name, source=array_path, count=len(values))
        return _assign(output, path, values)
