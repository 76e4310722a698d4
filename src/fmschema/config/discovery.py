"""Locate the project's ``fmschema.toml``."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

CONFIG_FILENAME = "fmschema.toml"
CONFIG_ENV_VAR = "FMSCHEMA_CONFIG"


def _ancestors(start: Path) -> Iterator[Path]:
    here = start.resolve()
    yield here
    yield from here.parents


def find_config(start: Path | None = None) -> Path | None:
    """Return the config file governing *start* (default: cwd).

    ``$FMSCHEMA_CONFIG`` pins the file outright; a pinned path that does not
    exist means no config rather than falling back to the directory search.
    """
    pinned = os.environ.get(CONFIG_ENV_VAR)
    if pinned:
        path = Path(pinned)
        return path if path.is_file() else None

    for directory in _ancestors(start or Path.cwd()):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None
