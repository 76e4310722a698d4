"""Schema and template repositories.

Both read files from disk and hand back domain values wrapped in
``Result``. Schemas are cached by resolved path; templates are cheap and
read on every call so edits show up between builds.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog
from ruamel.yaml.error import YAMLError

from fmschema.domain.content import load_yaml
from fmschema.domain.errors import ErrorKind
from fmschema.domain.mapper import parse_template_content
from fmschema.domain.models import Schema, Template
from fmschema.domain.result import Ok, Result, fail

log = structlog.get_logger(__name__)

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


def _read_text(path: Path, *, missing: ErrorKind) -> Result[str]:
    if not path.is_file():
        label = "Schema" if missing is ErrorKind.SCHEMA_NOT_FOUND else "File"
        return fail(missing, f"{label} not found: {path}", path=str(path))
    try:
        return Ok(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        return fail(ErrorKind.READ_ERROR, f"Cannot read {path}: {exc}", path=str(path))


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class SchemaRepository:
    """Load JSON or YAML schema files, caching by resolved path."""

    def __init__(self) -> None:
        self._cache: dict[str, Schema] = {}

    def load(self, path: Path) -> Result[Schema]:
        key = str(path.resolve())
        cached = self._cache.get(key)
        if cached is not None:
            return Ok(cached)

        text = _read_text(path, missing=ErrorKind.SCHEMA_NOT_FOUND)
        if not text.ok:
            return text

        raw: Any
        try:
            if path.suffix.lower() in _YAML_SUFFIXES:
                raw = load_yaml(text.data)
            else:
                raw = json.loads(text.data)
        except (json.JSONDecodeError, YAMLError) as exc:
            return fail(ErrorKind.INVALID_SCHEMA, f"Invalid schema {path}: {exc}", path=key)

        schema = Schema.create(raw, path=key)
        if schema.ok:
            self._cache[key] = schema.data
            log.debug("schema.loaded", path=key)
        return schema

    def clear(self) -> None:
        self._cache.clear()


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def detect_format(text: str, *, suffix: str = "") -> str:
    """Guess ``json`` or ``yaml`` from a file suffix, falling back to content."""
    suffix = suffix.lower()
    if suffix == ".json":
        return "json"
    if suffix in _YAML_SUFFIXES:
        return "yaml"
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return "yaml"
    return "json"


def normalize_template(template: Template) -> Result[Template]:
    """Re-encode a YAML template as JSON so it can be structurally analysed."""
    if template.format == "json":
        return Ok(template)
    parsed = parse_template_content(template)
    if not parsed.ok:
        return parsed
    return Ok(
        template.model_copy(
            update={"format": "json", "content": json.dumps(parsed.data, ensure_ascii=False)}
        )
    )


class TemplateRepository:
    """Load templates from files or inline definitions."""

    def load(self, path: Path) -> Result[Template]:
        text = _read_text(path, missing=ErrorKind.FILE_NOT_FOUND)
        if not text.ok:
            return text
        return self.from_definition(
            text.data,
            template_id=path.name,
            fmt=detect_format(text.data, suffix=path.suffix),
        )

    def from_definition(
        self,
        text: str,
        *,
        template_id: str = "<inline>",
        fmt: str | None = None,
    ) -> Result[Template]:
        fmt = fmt or detect_format(text)
        template = Template(id=template_id, format=fmt, content=text)
        log.debug("template.loaded", template=template_id, format=fmt)
        return Ok(template)

    def loader(self, base_dir: Path) -> Callable[[str], Result[Template]]:
        """Return a ``name -> Result[Template]`` callable resolving relative to *base_dir*."""

        def _load(name: str) -> Result[Template]:
            path = Path(name)
            return self.load(path if path.is_absolute() else base_dir / path)

        return _load
