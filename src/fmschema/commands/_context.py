"""Per-invocation state shared by every subcommand through ``ctx.obj``."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from fmschema.config.logging import configure_logging
from fmschema.output.formatters import OutputSettings, format_result
from fmschema.services.telemetry import enable_telemetry

if TYPE_CHECKING:
    from fmschema.config.settings import FmSettings
    from fmschema.services.base import BaseService
    from fmschema.services.result import ServiceResult


class AppContext:
    """Holds the resolved settings; builds services and prints their results."""

    def __init__(self, settings: FmSettings) -> None:
        self.settings = settings
        self.output = OutputSettings(
            json_output=settings.json_output,
            quiet=settings.quiet,
            verbose=settings.verbose,
        )
        configure_logging(
            verbose=settings.verbose, log_json=settings.log_json, quiet=settings.quiet
        )
        if settings.verbose:
            enable_telemetry()

    def service[S: BaseService](self, cls: type[S]) -> S:
        return cls(self.settings)

    def emit(self, result: ServiceResult) -> None:
        """Print *result* and set the exit status.

        A successful result goes to stdout and its warnings to stderr (JSON
        output already carries them). A failed result goes to stderr and the
        process exits 1.
        """
        rendered = format_result(result, settings=self.output)
        if not result.ok:
            click.echo(rendered, err=True)
            raise SystemExit(1)

        click.echo(rendered)
        if self.output.json_output:
            return
        for warning in result.warnings:
            click.echo(f"WARNING: {warning}", err=True)
