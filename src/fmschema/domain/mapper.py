"""TemplateMapper — maps one document's frontmatter into one template's shape.

INVARIANT: Mapping is all-or-nothing. A single unresolved placeholder
fails the whole document; a partially filled ``MappedData`` is never
returned.

Rules applied to every template node against the document's root data:

- A string that is entirely ``{{path}}`` or ``{path}`` is replaced by the
  typed value at ``path`` (objects, lists, numbers, booleans included).
- Any other string, and every number, boolean, or null, is copied as is.
- Lists are mapped element-wise, dicts key-wise (shape preserved).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import structlog
from ruamel.yaml.error import YAMLError

from fmschema.domain.content import load_yaml
from fmschema.domain.errors import ErrorKind
from fmschema.domain.models import ExtractedData, MappedData, Schema, SchemaNode, Template
from fmschema.domain.paths import (
    UNRESOLVED,
    parse_placeholder,
    resolve,
    resolve_result,
    set_path,
)
from fmschema.domain.result import Err, Ok, Result, fail

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Validation modes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoSchema:
    """Map without structural checks."""


@dataclass(frozen=True)
class WithSchema:
    """Map and require every template field to be declared by *schema*."""

    schema: Schema


type ValidationMode = NoSchema | WithSchema


# ---------------------------------------------------------------------------
# Template content parsing
# ---------------------------------------------------------------------------

_JSON_SHAPED = frozenset({"json", "xml", "custom"})


def _mapping_failed(message: str, **detail: Any) -> Err:
    return fail(ErrorKind.TEMPLATE_MAPPING_FAILED, message, **detail)


def parse_template_content(template: Template) -> Result[dict[str, Any]]:
    """Parse template content into a dict per its declared format.

    ``json``, ``xml``, and ``custom`` content is JSON; ``yaml`` content is
    YAML. Only object roots are accepted.
    """
    fmt = template.format
    if fmt == "yaml":
        try:
            parsed = load_yaml(template.content)
        except YAMLError as exc:
            return _mapping_failed(f"Invalid template definition YAML: {exc}", template=template.id)
    elif fmt in _JSON_SHAPED:
        try:
            parsed = json.loads(template.content)
        except json.JSONDecodeError as exc:
            return _mapping_failed(f"Invalid template definition JSON: {exc}", template=template.id)
    else:
        return _mapping_failed(f"Unsupported template format: {fmt}", template=template.id)

    if not isinstance(parsed, dict):
        return _mapping_failed("Template definition must be a JSON object", template=template.id)
    return Ok(parsed)


# ---------------------------------------------------------------------------
# Structural alignment
# ---------------------------------------------------------------------------


def check_alignment(template_node: Any, schema_node: SchemaNode, prefix: str = "") -> str | None:
    """Return the dotted path of the first template field the schema does not declare.

    Object schema nodes without ``properties`` accept any nested keys.
    Lists are checked element-wise against ``items`` when it declares
    properties.
    """
    if isinstance(template_node, dict):
        if schema_node.properties is None:
            return None
        for key, child in template_node.items():
            dotted = f"{prefix}.{key}" if prefix else key
            child_schema = schema_node.properties.get(key)
            if child_schema is None:
                return dotted
            missing = check_alignment(child, child_schema, dotted)
            if missing is not None:
                return missing
        return None
    if isinstance(template_node, list) and schema_node.items is not None:
        for index, child in enumerate(template_node):
            missing = check_alignment(child, schema_node.items, f"{prefix}[{index}]")
            if missing is not None:
                return missing
    return None


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


class _Unmapped(Exception):
    """Internal signal: a placeholder path did not resolve."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.path = path


class TemplateMapper:
    """Apply a template to extracted frontmatter.

    Usage::

        mapper = TemplateMapper()
        result = mapper.map(ExtractedData(data=fm), template, NoSchema())
        if result.ok:
            mapped = result.data.data
    """

    def map(
        self,
        extracted: ExtractedData,
        template: Template,
        mode: ValidationMode | None = None,
    ) -> Result[MappedData]:
        """Map *extracted* through *template*, optionally checking against a schema."""
        mode = mode or NoSchema()

        if template.format == "handlebars":
            return _mapping_failed(
                "Handlebars support not yet implemented", template=template.id
            )

        if template.is_blank and template.mapping_rules:
            by_rules = self._map_with_rules(extracted, template)
            if not by_rules.ok:
                return by_rules
            mismatch = _misaligned(by_rules.data.data, template, mode)
            return by_rules if mismatch is None else mismatch

        parsed = parse_template_content(template)
        if not parsed.ok:
            return parsed

        structure = parsed.data
        mismatch = _misaligned(structure, template, mode)
        if mismatch is not None:
            return mismatch

        try:
            mapped = self._apply(structure, extracted.data)
        except _Unmapped as exc:
            log.debug("template.unresolved", template=template.id, path=exc.path)
            return _mapping_failed(
                f"Data structure does not match template: unresolved placeholder '{exc.path}'",
                template=template.id,
                path=exc.path,
            )

        log.debug("template.mapped", template=template.id, keys=len(mapped))
        return Ok(MappedData(data=mapped))

    def _apply(self, node: Any, root: Any) -> Any:
        """Recursively map *node* against *root*.

        Raises:
            _Unmapped: when a placeholder path does not resolve. ``map()``
                converts it to a ``TemplateMappingFailed`` result.
        """
        if isinstance(node, str):
            path = parse_placeholder(node)
            if path is None:
                return node
            value = resolve(root, path)
            if value is UNRESOLVED:
                raise _Unmapped(path)
            return _detach(value)
        if isinstance(node, list):
            return [self._apply(item, root) for item in node]
        if isinstance(node, dict):
            return {key: self._apply(value, root) for key, value in node.items()}
        return node

    def _map_with_rules(self, extracted: ExtractedData, template: Template) -> Result[MappedData]:
        output: dict[str, Any] = {}
        for rule in template.mapping_rules:
            found = resolve_result(extracted.data, rule.source)
            if not found.ok:
                return _mapping_failed(
                    f"Data structure does not match template: unresolved mapping source "
                    f"'{rule.source}'",
                    template=template.id,
                    path=rule.source,
                    segment=found.error.detail.get("segment"),
                )
            if not set_path(output, rule.target, _detach(found.data)):
                return _mapping_failed(
                    f"Mapping target '{rule.target}' conflicts with an earlier rule",
                    template=template.id,
                    path=rule.target,
                )
        return Ok(MappedData(data=output))


def _misaligned(structure: Any, template: Template, mode: ValidationMode) -> Err | None:
    """A ``Structure mismatch`` failure when *structure* leaves the schema, else None."""
    if not isinstance(mode, WithSchema):
        return None
    missing = check_alignment(structure, mode.schema.definition)
    if missing is None:
        return None
    return _mapping_failed(
        f"Structure mismatch: field '{missing}' is not defined in schema",
        template=template.id,
        field=missing,
    )


def _detach(value: Any) -> Any:
    """Copy containers so mapped output never aliases the source document."""
    if isinstance(value, dict):
        return {k: _detach(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_detach(v) for v in value]
    return value
