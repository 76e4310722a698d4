"""``fmschema`` entry point: global options, then the subcommands."""

from __future__ import annotations

from pathlib import Path

import click

from fmschema import __version__
from fmschema.commands import register_commands
from fmschema.commands._base import FmGroup
from fmschema.commands._context import AppContext
from fmschema.config.settings import FmSettings

ROOT_EXAMPLES = """\
  fmschema build schema.json "docs/**/*.md"
  fmschema build schema.json "docs/**/*.md" -o registry.yaml
  fmschema --json validate schema.json "docs/**/*.md"
  fmschema inspect template.json
  fmschema -C site build schema.json "notes/*.md"
"""


@click.group(cls=FmGroup, invoke_without_command=True, examples=ROOT_EXAMPLES)
@click.version_option(version=__version__, prog_name="fmschema")
@click.option("--json", "json_output", is_flag=True, help="Print results as JSON.")
@click.option("-q", "--quiet", is_flag=True, help="Print only the essentials.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging and stage timings.")
@click.option("--log-json", is_flag=True, help="Write logs to stderr as JSON lines.")
@click.option(
    "-c", "--config", "config_path", default=None, help="Use this TOML file instead of searching."
)
@click.option(
    "-C",
    "--project-root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Resolve input patterns and find fmschema.toml from this directory.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    project_root: Path | None,
) -> None:
    """Build structured documents from markdown frontmatter."""
    ctx.obj = AppContext(
        FmSettings.from_cli(
            config_path=config_path,
            project_root=project_root.resolve() if project_root else None,
            json_output=json_output,
            quiet=quiet,
            verbose=verbose,
            log_json=log_json,
        )
    )
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
