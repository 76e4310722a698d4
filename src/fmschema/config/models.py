"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, ``fmschema.toml`` only
contains overrides. An empty file (or no file) is a valid configuration.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

OutputFormat = Literal["json", "yaml", "xml", "markdown"]
StrategyName = Literal["replace-latest", "replace-first", "merge-arrays", "accumulate"]


class BuildConfig(BaseModel):
    """[build] section."""

    model_config = {"frozen": True}

    format: OutputFormat = "json"
    strategy: StrategyName = "replace-latest"
    merge_key: str | None = None
    accumulate_pattern: str | None = None
    strict: bool = False
    workers: int = Field(default=1, ge=1)


class DiscoveryConfig(BaseModel):
    """[discovery] section."""

    model_config = {"frozen": True}

    pattern: str = "**/*.md"
    skip_dirs: list[str] = Field(
        default_factory=lambda: [".git", ".obsidian", "node_modules", ".venv"]
    )
