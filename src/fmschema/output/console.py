"""Buffered Rich consoles and the ``fm.*`` style names used by the renderers."""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

# Template field classifications, as reported by ``inspect``.
_KIND_STYLES: dict[str, str] = {
    "array": "green",
    "scalar": "blue",
    "nested": "magenta",
}

FM_THEME = Theme(
    {
        "fm.ok": "bold green",
        "fm.error": "bold red",
        "fm.op": "bold cyan",
        "fm.key": "dim",
        "fm.path": "dim",
        **{f"fm.kind.{kind}": style for kind, style in _KIND_STYLES.items()},
    }
)

CONSOLE_WIDTH = 120


def create_console(*, width: int = CONSOLE_WIDTH) -> Console:
    """A console writing into memory; colour is dropped when stdout is not a TTY."""
    return Console(file=StringIO(), theme=FM_THEME, highlight=False, width=width)


def get_output(console: Console) -> str:
    buffer = console.file
    if not isinstance(buffer, StringIO):
        raise TypeError("console was not created by create_console()")
    return buffer.getvalue()


def style_for_kind(kind: str) -> str:
    return f"fm.kind.{kind}" if kind in _KIND_STYLES else ""
