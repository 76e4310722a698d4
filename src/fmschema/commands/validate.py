"""Command: validate frontmatter against a schema."""

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
  fmschema validate schema.json "docs/**/*.md"
  fmschema --json validate schema.yaml notes/a.md notes/b.md""",
)
@click.argument("schema", type=click.Path(path_type=Path))
@click.argument("patterns", nargs=-1)
@click.pass_obj
def validate(app: AppContext, schema: Path, patterns: tuple[str, ...]) -> None:
    """Report every document whose frontmatter violates the schema."""
    from fmschema.services.validate import ValidateService

    app.emit(app.service(ValidateService).validate(schema, patterns))
