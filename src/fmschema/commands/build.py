"""Command: build one output document from many markdown files."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from fmschema.commands._base import FmCommand

if TYPE_CHECKING:
    from fmschema.commands._context import AppContext


@click.command(
    cls=FmCommand,
    examples="""\
  fmschema build schema.json "docs/**/*.md"
  fmschema build schema.json "docs/**/*.md" -o registry.json
  fmschema build schema.json notes/*.md -t summary.yaml -f yaml
  fmschema build schema.json "**/*.md" --strategy merge-arrays --merge-key id
  fmschema build schema.json "**/*.md" --strict --dry-run -o out.xml""",
)
@click.argument("schema", type=click.Path(path_type=Path))
@click.argument("patterns", nargs=-1)
@click.option(
    "-t",
    "--template",
    type=click.Path(path_type=Path),
    default=None,
    help="Template file (default: the schema's x-template).",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Write the result to a file instead of stdout.",
)
@click.option(
    "-f",
    "--format",
    "output_format",
    type=click.Choice(["json", "yaml", "xml", "markdown"]),
    default=None,
    help="Output format (default: x-template-format, output suffix, or config).",
)
@click.option(
    "--strategy",
    type=click.Choice(["replace-latest", "replace-first", "merge-arrays", "accumulate"]),
    default=None,
    help="How scalar and array fields are merged across documents.",
)
@click.option("--merge-key", default=None, help="Fold merged array objects sharing this key.")
@click.option("--pattern", default=None, help="Field-name glob for the accumulate strategy.")
@click.option(
    "--strict/--no-strict",
    default=None,
    help="Require template fields to exist in the schema.",
)
@click.option("--dry-run", is_flag=True, help="Build and report without writing the output file.")
@click.pass_obj
def build(
    app: AppContext,
    schema: Path,
    patterns: tuple[str, ...],
    template: Path | None,
    output: Path | None,
    output_format: str | None,
    strategy: str | None,
    merge_key: str | None,
    pattern: str | None,
    strict: bool | None,
    dry_run: bool,
) -> None:
    """Map every document's frontmatter through a template and merge the results."""
    from fmschema.services.build import BuildService, strategy_from_name
    from fmschema.services.result import ServiceResult

    chosen = None
    if strategy or merge_key or pattern:
        cfg = app.settings.build
        resolved = strategy_from_name(
            strategy or cfg.strategy,
            merge_key=merge_key or cfg.merge_key,
            pattern=pattern or cfg.accumulate_pattern,
        )
        if not resolved.ok:
            app.emit(ServiceResult.failure("build", resolved.error))
            return
        chosen = resolved.data

    app.emit(
        app.service(BuildService).build(
            schema,
            patterns,
            template_path=template,
            output_path=output,
            output_format=output_format,
            strategy=chosen,
            strict=strict,
            dry_run=dry_run,
        )
    )
