"""Shared pytest fixtures and test helpers for fmschema tests."""

from __future__ import annotations

import json
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from fmschema.config.settings import FmSettings
from fmschema.domain.content import render_frontmatter
from fmschema.services.telemetry import _current_span, disable_telemetry


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None]:
    """Keep FMSCHEMA_* variables and telemetry state from leaking between tests."""
    monkeypatch.delenv("FMSCHEMA_CONFIG", raising=False)
    monkeypatch.delenv("FMSCHEMA_BUILD__WORKERS", raising=False)
    yield
    disable_telemetry()
    _current_span.set(None)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary project directory that is also the CWD."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def settings(workspace: Path) -> FmSettings:
    return FmSettings.from_cli(project_root=workspace)


@pytest.fixture
def write_doc(workspace: Path) -> Callable[..., Path]:
    """Write a markdown file with frontmatter under the workspace."""

    def _write(relpath: str, frontmatter: dict[str, Any] | None, body: str = "Body.\n") -> Path:
        path = workspace / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        if frontmatter is None:
            path.write_text(body, encoding="utf-8")
        else:
            path.write_text(render_frontmatter(frontmatter, body), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_json(workspace: Path) -> Callable[[str, Any], Path]:
    """Write a JSON file (schema or template) under the workspace."""

    def _write(relpath: str, payload: Any) -> Path:
        path = workspace / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def registry_project(
    workspace: Path,
    write_doc: Callable[..., Path],
    write_json: Callable[[str, Any], Path],
) -> Path:
    """A command registry: one document per command, configs derived across them."""
    write_json(
        "schema.json",
        {
            "type": "object",
            "x-template": "registry_template.json",
            "properties": {
                "version": {"type": "string"},
                "tools": {
                    "type": "object",
                    "properties": {
                        "availableConfigs": {
                            "type": "array",
                            "items": {"type": "string"},
                            "x-derived-from": "commands[].c1",
                            "x-derived-unique": True,
                        },
                        "commands": {
                            "type": "array",
                            "x-frontmatter-part": True,
                            "items": {"$ref": "#/definitions/command"},
                        },
                    },
                },
            },
            "definitions": {
                "command": {
                    "type": "object",
                    "required": ["c1", "c2"],
                    "properties": {
                        "c1": {"type": "string"},
                        "c2": {"type": "string"},
                        "title": {"type": "string"},
                    },
                }
            },
        },
    )
    write_json(
        "registry_template.json",
        {"version": "1.0.0", "tools": {"availableConfigs": [], "commands": []}},
    )
    write_doc("commands/b-run.md", {"c1": "b", "c2": "run", "title": "Run b"})
    write_doc("commands/a-build.md", {"c1": "a", "c2": "build", "title": "Build a"})
    write_doc("commands/a-test.md", {"c1": "a", "c2": "test", "title": "Test a"})
    return workspace
