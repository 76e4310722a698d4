"""Rich rendering of service results for humans.

:func:`render_result` picks a renderer by ``result.op``; ops without one get
a flat key/value listing. Everything is drawn onto a recording console and
returned as text, so callers decide where it is printed.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from rich.text import Text
from rich.tree import Tree

from fmschema.output.console import create_console, get_output, style_for_kind

if TYPE_CHECKING:
    from rich.console import Console

    from fmschema.services.result import ServiceResult

_PATH_KEYS = frozenset({"path", "output", "schema", "template"})


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render *result*; plain text unless the console is attached to a terminal."""
    console = create_console()
    if not result.ok:
        _render_error(result, console, verbose=verbose)
    else:
        _OP_RENDERERS.get(result.op, _render_generic)(result, console, verbose=verbose)
        if verbose:
            _render_meta(console, result)
    return get_output(console).rstrip("\n")


def error_line(result: ServiceResult) -> str:
    """``ERROR: <op> — <code>: <message>`` on one line."""
    return f"ERROR: {result.op} — {_error_summary(result)}"


def render_quiet(result: ServiceResult) -> str:
    """The shortest useful output: the built document, ``OK: <op>`` or the error line."""
    if not result.ok:
        return error_line(result)
    if result.op == "build" and result.data.get("output") is None:
        return str(result.data.get("content", "")).rstrip("\n")
    return f"OK: {result.op}"


def _error_summary(result: ServiceResult) -> str:
    err = result.error
    return "Unknown error" if err is None else f"{err.code}: {err.message}"


def _headline(console: Console, result: ServiceResult, *rest: Text) -> None:
    label = Text("OK", style="fm.ok") if result.ok else Text("ERROR", style="fm.error")
    console.print(label, Text(f"  {result.op}", style="fm.op"), *rest)


def _field(console: Console, key: str, value: Any) -> None:
    console.print(
        Text(f"  {key}: ", style="fm.key"),
        Text(str(value), style="fm.path" if key in _PATH_KEYS else ""),
        sep="",
    )


def _span_label(span: dict[str, Any]) -> Text:
    duration = float(span.get("duration_ms", 0.0))
    if duration > 1000:
        timing = "bold red"
    elif duration > 100:
        timing = "yellow"
    else:
        timing = "dim"
    label = Text.assemble((f"{duration:.2f}ms", timing), "  ", span.get("name", "?"))
    if span.get("error"):
        label.append(f"  failed: {span['error']}", style="fm.error")
    notes = span.get("annotations") or {}
    if notes:
        label.append("  (" + ", ".join(f"{k}={v}" for k, v in notes.items()) + ")", style="dim")
    return label


def _span_tree(parent: Tree, span: dict[str, Any]) -> None:
    branch = parent.add(_span_label(span))
    for child in span.get("children", []):
        _span_tree(branch, child)


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Verbose trailer: meta values, with the stage timings as a tree."""
    if not result.meta:
        return
    console.print()
    tree = Tree(Text("meta", style="dim"))
    for key, value in result.meta.items():
        if key == "telemetry":
            _span_tree(tree, value)
        else:
            tree.add(Text(f"{key}: {value}"))
    console.print(tree)


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _headline(console, result, Text(f" — {_error_summary(result)}"))
    if result.error is None:
        return

    detail = result.error.detail
    for issue in detail.get("issues") or []:
        where = str(issue.get("path", ""))
        if issue.get("field"):
            where = f"{where} [{issue['field']}]"
        console.print(
            Text.assemble(
                ("  invalid ", "fm.error"), (where, "fm.path"), f": {issue.get('message', '')}"
            )
        )

    extra = {k: v for k, v in detail.items() if k != "issues"}
    if verbose and extra:
        console.print(Text("  detail:", style="dim"))
        for key, value in extra.items():
            console.print(f"    {key}: {value}", markup=False)


def _render_build(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """The document itself when printed to stdout, a summary when written to a file."""
    data = result.data
    if data.get("output") is None:
        console.out(str(data.get("content", "")).rstrip("\n"), highlight=False)
        return
    _headline(console, result)
    for key in ("output", "format", "strategy", "documents", "skipped"):
        if key in data:
            _field(console, key, data[key])
    if data.get("dry_run"):
        _field(console, "dry_run", "nothing written")


def _render_validate(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    data = result.data
    console.print(
        Text("OK", style="fm.ok"),
        Text(f"  {data.get('valid', 0)} of {data.get('documents', 0)} documents valid"),
    )
    if verbose:
        for path in data.get("files", []):
            _field(console, "path", path)


def _structure_tree(tree: Tree, structure: dict[str, Any]) -> None:
    for name in structure.get("array_fields", []):
        tree.add(Text(f"{name} []", style=style_for_kind("array")))
    for name in structure.get("scalar_fields", []):
        tree.add(Text(name, style=style_for_kind("scalar")))
    for name, nested in structure.get("nested_structures", {}).items():
        _structure_tree(tree.add(Text(f"{name} {{}}", style=style_for_kind("nested"))), nested)


def _render_inspect(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    data = result.data
    _headline(console, result)
    _field(console, "template", data.get("template", ""))
    _field(console, "format", data.get("format", ""))
    tree = Tree(Text("structure", style="bold"))
    _structure_tree(tree, data.get("structure", {}))
    console.print(tree)


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _headline(console, result)
    for key, value in result.data.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, separators=(",", ":"))
        _field(console, key, value)


_OP_RENDERERS: dict[str, Callable[..., None]] = {
    "build": _render_build,
    "validate": _render_validate,
    "inspect": _render_inspect,
}
