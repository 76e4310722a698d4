"""Subcommand modules for fmschema.

Provides register_commands() which uses deferred imports to keep
``fmschema --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register the standalone commands on the root CLI group."""
    from fmschema.commands.build import build
    from fmschema.commands.inspect import inspect_cmd
    from fmschema.commands.validate import validate

    cli.add_command(build)
    cli.add_command(validate)
    cli.add_command(inspect_cmd)
