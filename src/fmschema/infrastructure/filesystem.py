"""Document discovery and reading.

Pure parsing lives in :mod:`fmschema.domain.content` (dependency
direction: infrastructure -> domain). This module handles the actual
file I/O: glob expansion, skip rules, and reading markdown files into
:class:`~fmschema.domain.models.Document` values.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from ruamel.yaml.error import YAMLError

from fmschema.domain.content import parse_frontmatter, split_frontmatter
from fmschema.domain.errors import ErrorKind
from fmschema.domain.models import Document, FrontMatter
from fmschema.domain.result import Ok, Result, fail

# Directories to skip when expanding glob patterns.
DEFAULT_SKIP_DIRS: frozenset[str] = frozenset({".git", ".obsidian", "node_modules", ".venv"})

DEFAULT_PATTERN = "**/*.md"


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _is_skipped(path: Path, root: Path, skip_dirs: frozenset[str]) -> bool:
    try:
        parts = path.relative_to(root).parts[:-1]
    except ValueError:
        parts = path.parts[:-1]
    return any(part in skip_dirs for part in parts)


def discover_documents(
    root: Path,
    patterns: Iterable[str],
    *,
    skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS,
) -> list[Path]:
    """Expand *patterns* relative to *root* into a sorted, de-duplicated file list.

    A pattern naming an existing file is taken as is (even inside a
    skipped directory). Anything else is a glob evaluated with
    :meth:`Path.glob`, so ``**`` recurses. Absolute patterns are globbed
    from their anchor.
    """
    skip = frozenset(skip_dirs)
    found: set[Path] = set()
    for pattern in patterns:
        direct = Path(pattern) if Path(pattern).is_absolute() else root / pattern
        if direct.is_file():
            found.add(direct.resolve())
            continue

        if Path(pattern).is_absolute():
            anchor = Path(Path(pattern).anchor)
            relative = str(Path(pattern).relative_to(anchor))
            base = anchor
        else:
            base, relative = root, pattern
        for path in base.glob(relative):
            if path.is_file() and not _is_skipped(path, base, skip):
                found.add(path.resolve())

    return sorted(found)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def read_document(path: Path) -> Result[Document]:
    """Read a markdown file into a :class:`Document`.

    Files without a ``---`` block yield a document whose ``frontmatter``
    is None; callers decide whether that is a skip or an error.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return fail(ErrorKind.FILE_NOT_FOUND, f"File not found: {path}", path=str(path))
    except (OSError, UnicodeDecodeError) as exc:
        return fail(ErrorKind.READ_ERROR, f"Cannot read {path}: {exc}", path=str(path))

    raw, _body = split_frontmatter(content)
    if raw is None:
        return Ok(Document(path=path, content=content))

    try:
        data, _ = parse_frontmatter(content)
    except (YAMLError, ValueError) as exc:
        return fail(
            ErrorKind.READ_ERROR,
            f"Invalid frontmatter in {path}: {exc}",
            path=str(path),
        )
    return Ok(Document(path=path, content=content, frontmatter=FrontMatter(data=data, raw=raw)))


def write_output(path: Path, text: str) -> Result[Path]:
    """Write *text* to *path*, creating parent directories."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        return fail(ErrorKind.WRITE_ERROR, f"Cannot write {path}: {exc}", path=str(path))
    return Ok(path)
