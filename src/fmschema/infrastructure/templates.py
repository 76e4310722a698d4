"""Shared Jinja2 template loading with per-project override support."""

from __future__ import annotations

from pathlib import Path

from jinja2 import BaseLoader, ChoiceLoader, Environment, FileSystemLoader, PackageLoader


def build_template_environment(group: str, *, project_root: Path | None = None) -> Environment:
    """Build a Jinja2 environment with user overrides before packaged defaults.

    User overrides are loaded from ``.fmschema/templates/<group>/`` inside
    the project root, so ``markdown.md.j2`` can be replaced per project.
    """

    loaders: list[BaseLoader] = []
    if project_root is not None:
        template_root = project_root / ".fmschema" / "templates"
        loaders.append(FileSystemLoader([str(template_root / group), str(template_root)]))

    loaders.append(PackageLoader("fmschema", f"templates/{group}"))
    return Environment(
        loader=ChoiceLoader(loaders),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
