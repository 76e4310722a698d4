"""Serialize a final output structure as JSON, YAML, XML, or Markdown.

JSON and YAML are lossless. XML wraps the value in a ``<root>`` element
with list entries as ``<item index="i">``; mapping keys that are not valid
element names are written as ``<entry key="...">``. Markdown is rendered
through the packaged ``markdown.md.j2`` Jinja2 template, which a project can
override under ``.fmschema/templates/output/``.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape

from jinja2 import TemplateError

from fmschema.domain.content import dump_yaml
from fmschema.domain.errors import ErrorKind
from fmschema.domain.result import Ok, Result, fail
from fmschema.infrastructure.templates import build_template_environment

SERIALIZE_FORMATS: tuple[str, ...] = ("json", "yaml", "xml", "markdown")

SUFFIX_FORMATS: dict[str, str] = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".xml": "xml",
    ".md": "markdown",
    ".markdown": "markdown",
}

_XML_ENTITIES = {'"': "&quot;", "'": "&#39;"}
# Keys usable verbatim as element names; others become <entry key="...">.
_XML_NAME = re.compile(r"[^\W\d][\w.-]*")
_MD_SPECIAL = str.maketrans({c: f"\\{c}" for c in "*_[]`"})


def format_for_path(path: Path) -> str | None:
    """Guess an output format from a file suffix."""
    return SUFFIX_FORMATS.get(path.suffix.lower())


def serialize(value: Any, fmt: str, *, project_root: Path | None = None) -> Result[str]:
    """Render *value* in *fmt*; unknown formats are ``InvalidFormat``."""
    if fmt == "json":
        return Ok(json.dumps(value, indent=2, ensure_ascii=False) + "\n")
    if fmt == "yaml":
        return Ok(dump_yaml(value))
    if fmt == "xml":
        body = "\n".join(_xml_lines(value, "root", "", 0))
        return Ok(f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n')
    if fmt == "markdown":
        return _markdown(value, project_root)
    return fail(
        ErrorKind.INVALID_FORMAT,
        f"Unsupported output format: {fmt} (expected one of {', '.join(SERIALIZE_FORMATS)})",
        format=fmt,
    )


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------


def _xml_text(value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return escape(str(value), _XML_ENTITIES)


def _xml_element(key: str) -> tuple[str, str]:
    """Element name and attributes for a mapping key."""
    if _XML_NAME.fullmatch(key) and not key.lower().startswith("xml"):
        return key, ""
    return "entry", f' key="{escape(key, _XML_ENTITIES)}"'


def _xml_lines(value: Any, tag: str, attrs: str, depth: int) -> list[str]:
    pad = "  " * depth
    if value is None or (isinstance(value, (dict, list)) and not value):
        return [f"{pad}<{tag}{attrs}></{tag}>"]
    if isinstance(value, dict):
        lines = [f"{pad}<{tag}{attrs}>"]
        for key, child in value.items():
            lines.extend(_xml_lines(child, *_xml_element(str(key)), depth + 1))
        lines.append(f"{pad}</{tag}>")
        return lines
    if isinstance(value, list):
        lines = [f"{pad}<{tag}{attrs}>"]
        for index, item in enumerate(value):
            lines.extend(_xml_lines(item, "item", f' index="{index}"', depth + 1))
        lines.append(f"{pad}</{tag}>")
        return lines
    return [f"{pad}<{tag}{attrs}>{_xml_text(value)}</{tag}>"]


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------


def _md_scalar(value: Any) -> str:
    if value is None:
        return "_null_"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    text = str(value)
    if "\n" in text:
        return f"\n```\n{text}\n```"
    return text.translate(_MD_SPECIAL)


def _markdown(value: Any, project_root: Path | None) -> Result[str]:
    env = build_template_environment("output", project_root=project_root)
    env.filters["scalar"] = _md_scalar
    try:
        rendered = env.get_template("markdown.md.j2").render(data=value)
    except TemplateError as exc:
        return fail(ErrorKind.INVALID_FORMAT, f"Markdown rendering failed: {exc}")
    return Ok(rendered.strip("\n") + "\n")
