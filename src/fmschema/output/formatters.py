"""ServiceResult -> text, in the requested output mode.

JSON (``--json``) is the machine contract; quiet mode prints one line;
everything else goes through the Rich renderers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fmschema.output.renderers import render_quiet, render_result

if TYPE_CHECKING:
    from fmschema.services.result import ServiceResult


@dataclass(frozen=True)
class OutputSettings:
    """Output mode flags resolved from the CLI."""

    json_output: bool = False
    quiet: bool = False
    verbose: bool = False


def format_result(
    result: ServiceResult,
    *,
    settings: OutputSettings | None = None,
    json_output: bool = False,
) -> str:
    """Format a ServiceResult for display.

    ``settings`` wins over the ``json_output`` shorthand when both are given.
    """
    settings = settings or OutputSettings(json_output=json_output)
    if settings.json_output:
        return result.model_dump_json(indent=2)
    if settings.quiet:
        return render_quiet(result)
    return render_result(result, verbose=settings.verbose)
