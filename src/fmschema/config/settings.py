"""Settings for one CLI invocation.

Values are layered, first match wins:

1. keyword arguments (the global CLI flags)
2. ``FMSCHEMA_*`` environment variables, ``__`` separating nested sections
3. the ``fmschema.toml`` picked by :func:`~fmschema.config.discovery.find_config`
4. the defaults declared on the section models
"""

from __future__ import annotations

import tomllib
from contextvars import ContextVar
from pathlib import Path
from typing import Any

import click
from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from fmschema.config.discovery import find_config
from fmschema.config.models import BuildConfig, DiscoveryConfig

# The TOML file for the settings object currently being built.
_toml_file: ContextVar[Path | None] = ContextVar("_toml_file", default=None)


class FmSettings(BaseSettings):
    """Resolved configuration.

    ``project_root`` anchors relative input patterns; ``config_path`` records
    which TOML file contributed, if any.
    """

    model_config = SettingsConfigDict(
        frozen=True,
        env_prefix="FMSCHEMA_",
        env_nested_delimiter="__",
    )

    project_root: Path = Field(default_factory=Path.cwd)
    config_path: Path | None = None

    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False

    build: BuildConfig = Field(default_factory=BuildConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]
        toml_file = _toml_file.get()
        if toml_file is not None:
            sources.append(TomlConfigSettingsSource(settings_cls, toml_file=toml_file))
        return tuple(sources)

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        project_root: Path | None = None,
        **cli_flags: Any,
    ) -> FmSettings:
        """Build settings for a command run from *project_root* (default: cwd).

        An explicit *config_path* replaces discovery; if it names no file the
        TOML layer is skipped. Malformed TOML becomes a ``ClickException``.
        """
        if config_path:
            explicit = Path(config_path)
            toml_file = explicit if explicit.is_file() else None
        else:
            toml_file = find_config(project_root)

        token = _toml_file.set(toml_file)
        try:
            return cls(
                project_root=project_root or Path.cwd(),
                config_path=toml_file,
                **cli_flags,
            )
        except tomllib.TOMLDecodeError as exc:
            raise click.ClickException(f"Invalid TOML in {toml_file}: {exc}") from exc
        finally:
            _toml_file.reset(token)
