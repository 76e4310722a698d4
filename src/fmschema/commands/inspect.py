"""Command: show a template's aggregation structure."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from fmschema.commands._base import FmCommand

if TYPE_CHECKING:
    from fmschema.commands._context import AppContext


@click.command(
    "inspect",
    cls=FmCommand,
    examples="""\
  fmschema inspect template.json
  fmschema --json inspect templates/summary.yaml""",
)
@click.argument("template", type=click.Path(path_type=Path))
@click.pass_obj
def inspect_cmd(app: AppContext, template: Path) -> None:
    """Show how a template's fields are classified for aggregation."""
    from fmschema.services.inspect import InspectService

    app.emit(app.service(InspectService).inspect_template(template))
