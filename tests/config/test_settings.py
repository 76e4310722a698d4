"""Tests for FmSettings: priority chain of CLI flags, env vars, and TOML."""

from __future__ import annotations

from pathlib import Path

import click
import pytest
from pydantic import ValidationError

from fmschema.config.models import BuildConfig, DiscoveryConfig
from fmschema.config.settings import FmSettings


class TestDefaults:
    def test_sections(self) -> None:
        build = BuildConfig()
        assert build.format == "json"
        assert build.strategy == "replace-latest"
        assert build.strict is False
        assert build.accumulate_pattern is None
        assert build.workers == 1
        assert DiscoveryConfig().pattern == "**/*.md"

    def test_workers_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            BuildConfig(workers=0)

    def test_unknown_format_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BuildConfig(format="toml")  # type: ignore[arg-type]


class TestFromCli:
    def test_no_config(self, workspace: Path) -> None:
        settings = FmSettings.from_cli(project_root=workspace)
        assert settings.project_root == workspace
        assert settings.config_path is None
        assert settings.build == BuildConfig()

    def test_toml_sections(self, workspace: Path) -> None:
        (workspace / "fmschema.toml").write_text(
            '[build]\nformat = "yaml"\nstrict = true\n\n[discovery]\npattern = "notes/*.md"\n',
            encoding="utf-8",
        )
        settings = FmSettings.from_cli(project_root=workspace)
        assert settings.config_path == (workspace / "fmschema.toml").resolve()
        assert settings.build.format == "yaml"
        assert settings.build.strict is True
        assert settings.discovery.pattern == "notes/*.md"

    def test_env_overrides_toml(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (workspace / "fmschema.toml").write_text('[build]\nformat = "yaml"\n', encoding="utf-8")
        monkeypatch.setenv("FMSCHEMA_BUILD__WORKERS", "4")
        settings = FmSettings.from_cli(project_root=workspace)
        assert settings.build.workers == 4

    def test_cli_flags_win(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FMSCHEMA_VERBOSE", "false")
        settings = FmSettings.from_cli(project_root=workspace, verbose=True, json_output=True)
        assert settings.verbose is True
        assert settings.json_output is True

    def test_explicit_config_path(self, workspace: Path) -> None:
        custom = workspace / "conf" / "custom.toml"
        custom.parent.mkdir()
        custom.write_text('[build]\nstrategy = "merge-arrays"\nmerge_key = "id"\n', "utf-8")
        settings = FmSettings.from_cli(config_path=str(custom), project_root=workspace)
        assert settings.config_path == custom
        assert settings.build.strategy == "merge-arrays"
        assert settings.build.merge_key == "id"

    def test_invalid_toml(self, workspace: Path) -> None:
        (workspace / "fmschema.toml").write_text("[build\n", encoding="utf-8")
        with pytest.raises(click.ClickException, match="Invalid TOML"):
            FmSettings.from_cli(project_root=workspace)

    def test_frozen(self, workspace: Path) -> None:
        settings = FmSettings.from_cli(project_root=workspace)
        with pytest.raises(ValidationError):
            settings.quiet = True  # type: ignore[misc]
