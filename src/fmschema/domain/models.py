"""Core entities: documents, extracted/mapped data, templates, and schemas.

All models are frozen pydantic models. Payload values (``data``) are
JSON-shaped Python values; accessors that hand out internal containers
return deep copies so callers cannot mutate a model after creation.

Schema nodes carry their ``x-*`` extension keys as an explicit
:class:`Directives` model rather than loose dict lookups.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from fmschema.domain.errors import ErrorKind
from fmschema.domain.result import Ok, Result, fail

# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class FrontMatter(BaseModel):
    """The YAML block at the top of a markdown file."""

    model_config = {"frozen": True}

    data: dict[str, Any]
    raw: str = ""


class Document(BaseModel):
    """One input markdown file."""

    model_config = {"frozen": True}

    path: Path
    content: str = ""
    frontmatter: FrontMatter | None = None

    @property
    def has_frontmatter(self) -> bool:
        return self.frontmatter is not None


class ExtractedData(BaseModel):
    """Parsed frontmatter of one document."""

    model_config = {"frozen": True}

    data: Any

    def snapshot(self) -> Any:
        return copy.deepcopy(self.data)


class MappedData(BaseModel):
    """Result of mapping one :class:`ExtractedData` through one template."""

    model_config = {"frozen": True}

    data: dict[str, Any]

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)


class AnalysisResult(BaseModel):
    """Binds a document to its extracted and mapped data."""

    model_config = ConfigDict(frozen=True)

    document: Document
    extracted: ExtractedData
    mapped: MappedData


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

TEMPLATE_FORMATS: frozenset[str] = frozenset({"json", "yaml", "xml", "custom", "handlebars"})


class MappingRule(BaseModel):
    """Explicit ``source`` path -> ``target`` path copy rule."""

    model_config = {"frozen": True}

    source: str
    target: str


class Template(BaseModel):
    """A document describing the desired output shape with placeholders.

    ``format`` is kept as a free string so an unsupported format can be
    reported by the mapper instead of failing at construction.
    """

    model_config = {"frozen": True}

    id: str
    format: str = "json"
    content: str = ""
    mapping_rules: tuple[MappingRule, ...] = ()
    description: str = ""

    @property
    def is_blank(self) -> bool:
        return not self.content.strip()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

DIRECTIVE_KEYS: dict[str, str] = {
    "x-template": "template",
    "x-template-items": "template_items",
    "x-template-format": "template_format",
    "x-frontmatter-part": "frontmatter_part",
    "x-derived-from": "derived_from",
    "x-derived-unique": "derived_unique",
    "x-jmespath-filter": "jmespath_filter",
}


class Directives(BaseModel):
    """Extension directives attached to one schema node."""

    model_config = ConfigDict(frozen=True, extra="forbid", strict=True)

    template: str | None = None
    template_items: str | None = None
    template_format: str | None = None
    frontmatter_part: bool = False
    derived_from: str | None = None
    derived_unique: bool = False
    jmespath_filter: str | None = None


class SchemaNode(BaseModel):
    """One node of a JSON-Schema-like definition."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    type: str | list[str] | None = None
    properties: dict[str, SchemaNode] | None = None
    items: SchemaNode | None = None
    required: tuple[str, ...] = ()
    additional_properties: bool | SchemaNode | None = Field(
        default=None, alias="additionalProperties"
    )
    ref: str | None = Field(default=None, alias="$ref")
    definitions: dict[str, SchemaNode] | None = None
    description: str | None = None
    default: Any = None
    directives: Directives = Field(default_factory=Directives)

    @model_validator(mode="before")
    @classmethod
    def _collect_directives(cls, raw: Any) -> Any:
        """Move ``x-*`` keys into ``directives`` and merge ``$defs``."""
        if not isinstance(raw, dict):
            msg = f"schema node must be an object, got {type(raw).__name__}"
            raise ValueError(msg)
        node: dict[str, Any] = {}
        directives: dict[str, Any] = {}
        for key, value in raw.items():
            if key in DIRECTIVE_KEYS:
                directives[DIRECTIVE_KEYS[key]] = value
            elif key == "$defs":
                node.setdefault("definitions", {}).update(value or {})
            elif key == "definitions":
                node.setdefault("definitions", {}).update(value or {})
            elif key.startswith("x-"):
                continue
            else:
                node[key] = value
        node["directives"] = directives
        return node

    def types(self) -> tuple[str, ...]:
        if self.type is None:
            return ()
        if isinstance(self.type, str):
            return (self.type,)
        return tuple(self.type)

    def is_type(self, name: str) -> bool:
        return name in self.types()

    def child(self, name: str) -> SchemaNode | None:
        if self.properties is None:
            return None
        return self.properties.get(name)


class Schema(BaseModel):
    """A loaded schema: source path, parsed definition, and raw mapping."""

    model_config = {"frozen": True}

    path: str
    definition: SchemaNode
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, raw: Any, *, path: str = "<inline>") -> Result[Self]:
        """Parse *raw* into a :class:`Schema`, reporting problems as ``InvalidSchema``."""
        if not isinstance(raw, dict):
            return fail(
                ErrorKind.INVALID_SCHEMA,
                f"Schema root must be an object, got {type(raw).__name__}",
                path=path,
            )
        try:
            definition = SchemaNode.model_validate(raw)
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(p) for p in first.get("loc", ()) if p != "directives")
            return fail(
                ErrorKind.INVALID_SCHEMA,
                f"Invalid schema at '{where or '<root>'}': {first.get('msg', exc)}",
                path=path,
            )
        return Ok(cls(path=path, definition=definition, raw=copy.deepcopy(raw)))
