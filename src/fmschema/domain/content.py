"""Markdown frontmatter and YAML text handling.

No file access here; :mod:`fmschema.infrastructure.filesystem` reads the
files and hands their text to these functions.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from io import StringIO
from typing import Any

from ruamel.yaml import YAML

DELIMITER = "---"

# Opening fence on the first line, then everything up to the first closing fence.
_FENCED = re.compile(
    r"\A[ \t]*---[ \t]*\n(?P<block>.*?)^[ \t]*---[ \t]*$\n?",
    re.DOTALL | re.MULTILINE,
)


def to_plain(value: Any) -> Any:
    """Reduce parsed YAML to JSON-shaped values.

    Keys become strings, any sequence becomes a list and dates become
    ISO-8601 strings, so frontmatter compares and serializes like JSON.
    """
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def load_yaml(text: str) -> Any:
    """Parse *text* with the safe loader; raises ``ruamel.yaml.error.YAMLError``."""
    return to_plain(YAML(typ="safe", pure=True).load(text))


def dump_yaml(value: Any) -> str:
    """Block-style YAML for *value*."""
    # ruamel's YAML object keeps emitter state between dumps; use a fresh one.
    emitter = YAML()
    emitter.default_flow_style = False
    emitter.allow_unicode = True
    out = StringIO()
    emitter.dump(value, out)
    return out.getvalue()


def split_frontmatter(content: str) -> tuple[str | None, str]:
    """Separate the fenced YAML block from the body.

    Line endings are normalised and a leading BOM is ignored. Without an
    opening and a closing ``---`` line the block is ``None`` and *content*
    comes back untouched as the body.
    """
    text = content.replace("\r\n", "\n").removeprefix("\ufeff")
    match = _FENCED.match(text)
    if match is None:
        return None, content
    block = match["block"].removesuffix("\n")
    body = text[match.end() :].removeprefix("\n")
    return block, body


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Return ``(frontmatter, body)``; documents without a block give ``{}``.

    Raises:
        ruamel.yaml.error.YAMLError: The block is not valid YAML.
        ValueError: The block parses to something other than a mapping.
    """
    block, body = split_frontmatter(content)
    if block is None:
        return {}, content
    data = load_yaml(block)
    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise ValueError(f"Frontmatter must be a mapping, got {type(data).__name__}")
    return data, body


def render_frontmatter(frontmatter: dict[str, Any], body: str = "") -> str:
    """Markdown text with *frontmatter* fenced above *body*."""
    return f"{DELIMITER}\n{dump_yaml(frontmatter)}{DELIMITER}\n{body}"
