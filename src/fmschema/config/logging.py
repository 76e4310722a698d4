"""Route structlog and stdlib logging through one stderr handler."""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor

_PACKAGE_LOGGER = "fmschema"


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _package_level(*, verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    return logging.WARNING


def configure_logging(
    *, verbose: bool = False, log_json: bool = False, quiet: bool = False
) -> None:
    """Install the stderr handler used by every ``fmschema.*`` logger.

    ``--verbose`` opens the package loggers to DEBUG and wins over ``--quiet``,
    which narrows them to ERROR. Third-party loggers stay at WARNING. Output is
    JSON lines with ``--log-json`` and the structlog console format otherwise.
    """
    chain = _pre_chain()
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if log_json
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.WARNING)
    logging.getLogger(_PACKAGE_LOGGER).setLevel(_package_level(verbose=verbose, quiet=quiet))
