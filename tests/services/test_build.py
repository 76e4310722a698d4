"""Tests for BuildService — the end-to-end schema-directed build."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from fmschema.config.settings import FmSettings
from fmschema.domain.aggregation import AccumulateFields, MergeArrays, ReplaceValues
from fmschema.domain.content import load_yaml
from fmschema.domain.errors import ErrorKind
from fmschema.services.build import BuildService, strategy_from_name
from fmschema.services.telemetry import enable_telemetry

EXPECTED_REGISTRY = {
    "version": "1.0.0",
    "tools": {
        "availableConfigs": ["a", "b"],
        "commands": [
            {"c1": "a", "c2": "build", "title": "Build a"},
            {"c1": "a", "c2": "test", "title": "Test a"},
            {"c1": "b", "c2": "run", "title": "Run b"},
        ],
    },
}

PERSON_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer"},
        "active": {"type": "boolean"},
    },
}


@pytest.fixture
def people(
    workspace: Path,
    write_doc: Callable[..., Path],
    write_json: Callable[[str, Any], Path],
) -> Path:
    write_json("person.schema.json", PERSON_SCHEMA)
    write_json("person.json", {"name": "{{name}}", "age": "{{age}}", "active": "{{active}}"})
    write_doc("people/alice.md", {"name": "Alice", "age": 30, "active": True})
    write_doc("people/bob.md", {"name": "Bob", "age": 25, "active": False})
    return workspace


def _build(settings: FmSettings, schema: str, *patterns: str, **kwargs: Any):
    return BuildService(settings).build(Path(schema), patterns, **kwargs)


# ── Registry scenario ────────────────────────────────────────────────


class TestRegistryBuild:
    def test_structure(self, registry_project: Path, settings: FmSettings) -> None:
        result = _build(settings, "schema.json", "commands/*.md")
        assert result.ok, result.error
        assert result.data["structure"] == EXPECTED_REGISTRY
        assert json.loads(result.data["content"]) == EXPECTED_REGISTRY
        assert result.data["documents"] == 3
        assert result.data["skipped"] == 0
        assert result.data["template"] == "registry_template.json"
        assert result.data["output"] is None
        assert result.warnings == []

    def test_default_pattern(self, registry_project: Path, settings: FmSettings) -> None:
        result = _build(settings, "schema.json")
        assert result.data["structure"] == EXPECTED_REGISTRY

    def test_element_missing_required_field_is_skipped(
        self,
        registry_project: Path,
        settings: FmSettings,
        write_doc: Callable[..., Path],
    ) -> None:
        write_doc("commands/c-broken.md", {"c1": "c", "title": "No c2"})
        result = _build(settings, "schema.json", "commands/*.md")
        assert result.ok
        commands = result.data["structure"]["tools"]["commands"]
        assert [c["c2"] for c in commands] == ["build", "test", "run"]
        assert result.data["structure"]["tools"]["availableConfigs"] == ["a", "b"]
        assert any("c-broken.md: skipped for 'tools.commands'" in w for w in result.warnings)

    def test_no_frontmatter_is_warned(
        self,
        registry_project: Path,
        settings: FmSettings,
        write_doc: Callable[..., Path],
    ) -> None:
        write_doc("commands/notes.md", None, "just prose\n")
        result = _build(settings, "schema.json", "commands/*.md")
        assert result.ok
        assert result.data["documents"] == 3
        assert result.data["skipped"] == 1
        assert any("no frontmatter, skipped" in w for w in result.warnings)

    def test_writes_output_file_with_suffix_format(
        self, registry_project: Path, settings: FmSettings
    ) -> None:
        target = registry_project / "out" / "registry.yaml"
        result = _build(settings, "schema.json", "commands/*.md", output_path=target)
        assert result.ok
        assert result.data["format"] == "yaml"
        assert result.data["output"] == str(target)
        assert load_yaml(target.read_text(encoding="utf-8")) == EXPECTED_REGISTRY

    def test_dry_run_writes_nothing(self, registry_project: Path, settings: FmSettings) -> None:
        target = registry_project / "registry.json"
        result = _build(
            settings, "schema.json", "commands/*.md", output_path=target, dry_run=True
        )
        assert result.ok
        assert result.data["dry_run"] is True
        assert not target.exists()

    def test_explicit_format_wins(self, registry_project: Path, settings: FmSettings) -> None:
        result = _build(
            settings,
            "schema.json",
            "commands/*.md",
            output_path=registry_project / "out.json",
            output_format="xml",
        )
        assert result.data["format"] == "xml"
        assert result.data["content"].startswith("<?xml")

    def test_threaded_workers_keep_order(
        self, registry_project: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FMSCHEMA_BUILD__WORKERS", "2")
        settings = FmSettings.from_cli(project_root=registry_project)
        assert settings.build.workers == 2
        result = _build(settings, "schema.json", "commands/*.md")
        assert result.data["structure"] == EXPECTED_REGISTRY

    def test_telemetry_spans(self, registry_project: Path, settings: FmSettings) -> None:
        enable_telemetry()
        result = _build(settings, "schema.json", "commands/*.md")
        telemetry = result.meta["telemetry"]
        assert telemetry["name"] == "BuildService.build"
        names = [child["name"] for child in telemetry["children"]]
        assert names[:2] == ["load_schema", "load_template"]
        assert "directives" in names


# ── Scalar mapping and strategies ────────────────────────────────────


class TestStrategies:
    def test_replace_latest_default(self, people: Path, settings: FmSettings) -> None:
        result = _build(
            settings, "person.schema.json", "people/*.md", template_path=Path("person.json")
        )
        assert result.ok
        assert result.data["structure"] == {"name": "Bob", "age": 25, "active": False}
        assert result.data["strategy"] == "replace_values"

    def test_replace_first(self, people: Path, settings: FmSettings) -> None:
        result = _build(
            settings,
            "person.schema.json",
            "people/*.md",
            template_path=Path("person.json"),
            strategy=ReplaceValues(priority="first"),
        )
        assert result.data["structure"] == {"name": "Alice", "age": 30, "active": True}

    def test_accumulate(self, people: Path, settings: FmSettings) -> None:
        result = _build(
            settings,
            "person.schema.json",
            "people/*.md",
            template_path=Path("person.json"),
            strategy=AccumulateFields(pattern="name"),
        )
        assert result.data["structure"] == {"name": ["Alice", "Bob"], "age": 30, "active": True}

    def test_array_fields_concatenate(
        self,
        workspace: Path,
        settings: FmSettings,
        write_doc: Callable[..., Path],
        write_json: Callable[[str, Any], Path],
    ) -> None:
        write_json("s.json", {"type": "object", "x-template": "t.json"})
        write_json("t.json", {"entries": [{"id": "{{id}}", "title": "{{title}}"}]})
        write_doc("a.md", {"id": 1, "title": "First"})
        write_doc("b.md", {"id": 1, "title": "Duplicate"})
        write_doc("c.md", {"id": 2, "title": "Second"})

        plain = _build(settings, "s.json", "*.md")
        assert [e["title"] for e in plain.data["structure"]["entries"]] == [
            "First",
            "Duplicate",
            "Second",
        ]

        keyed = _build(settings, "s.json", "*.md", strategy=MergeArrays(merge_key="id"))
        assert keyed.data["structure"]["entries"] == [
            {"id": 1, "title": "First"},
            {"id": 2, "title": "Second"},
        ]

    def test_config_strategy(
        self, people: Path, write_doc: Callable[..., Path], workspace: Path
    ) -> None:
        (workspace / "fmschema.toml").write_text(
            '[build]\nstrategy = "replace-first"\n', encoding="utf-8"
        )
        settings = FmSettings.from_cli(project_root=workspace)
        result = _build(
            settings, "person.schema.json", "people/*.md", template_path=Path("person.json")
        )
        assert result.data["structure"]["name"] == "Alice"

    def test_document_failing_mapping_is_skipped(
        self, people: Path, settings: FmSettings, write_doc: Callable[..., Path]
    ) -> None:
        write_doc("people/zed.md", {"name": "Zed"})
        result = _build(
            settings, "person.schema.json", "people/*.md", template_path=Path("person.json")
        )
        assert result.ok
        assert result.data["structure"]["name"] == "Bob"
        assert result.data["skipped"] == 1
        assert any("zed.md" in w and "unresolved placeholder 'age'" in w for w in result.warnings)


class TestStrategyFromName:
    def test_known_names(self) -> None:
        assert strategy_from_name("replace-first").data == ReplaceValues(priority="first")
        assert strategy_from_name("merge-arrays", merge_key="id").data == MergeArrays(
            merge_key="id"
        )
        assert strategy_from_name("accumulate", pattern="t*").data == AccumulateFields(
            pattern="t*"
        )
        assert strategy_from_name("accumulate").data == AccumulateFields(pattern=None)

    def test_unknown_name(self) -> None:
        result = strategy_from_name("sum")
        assert result.error.kind is ErrorKind.INVALID_FORMAT
        assert "replace-latest" in result.error.message


# ── Item templates and filters ───────────────────────────────────────


class TestItemTemplates:
    def test_item_template_and_filter(
        self,
        workspace: Path,
        settings: FmSettings,
        write_doc: Callable[..., Path],
        write_json: Callable[[str, Any], Path],
    ) -> None:
        write_json(
            "schemas/index.json",
            {
                "type": "object",
                "x-template": "index_template.json",
                "x-template-format": "yaml",
                "properties": {
                    "articles": {
                        "type": "array",
                        "x-frontmatter-part": True,
                        "x-template-items": "article.json",
                        "x-jmespath-filter": "[?published]",
                        "items": {
                            "type": "object",
                            "properties": {"name": {"type": "string"}},
                        },
                    },
                    "names": {
                        "type": "array",
                        "x-derived-from": "articles[].name",
                    },
                },
            },
        )
        write_json("schemas/index_template.json", {"articles": [], "names": []})
        write_json("schemas/article.json", {"name": "{{title}}"})
        write_doc("posts/1.md", {"title": "One", "published": True})
        write_doc("posts/2.md", {"title": "Two", "published": False})
        write_doc("posts/3.md", {"title": "Three", "published": True})

        result = _build(settings, "schemas/index.json", "posts/*.md")
        assert result.ok, result.error
        assert result.data["format"] == "yaml"
        assert result.data["structure"] == {
            "articles": [{"name": "One"}, {"name": "Three"}],
            "names": ["One", "Three"],
        }


# ── Failures ─────────────────────────────────────────────────────────


class TestBuildErrors:
    def test_missing_schema(self, workspace: Path, settings: FmSettings) -> None:
        result = _build(settings, "missing.json")
        assert not result.ok
        assert result.error.code == "ProcessingStageError"
        assert result.error.message.startswith("load_schema: Schema not found:")
        assert result.error.detail["stage"] == "load_schema"
        assert result.error.detail["error"]["kind"] == "SchemaNotFound"

    def test_no_template(
        self, workspace: Path, settings: FmSettings, write_json: Callable[[str, Any], Path]
    ) -> None:
        write_json("s.json", {"type": "object"})
        result = _build(settings, "s.json")
        assert result.error.message.startswith("load_template: No template given")

    def test_unresolvable_ref(
        self, workspace: Path, settings: FmSettings, write_json: Callable[[str, Any], Path]
    ) -> None:
        write_json("s.json", {"type": "object", "properties": {"a": {"$ref": "#/nope"}}})
        result = _build(settings, "s.json")
        assert result.error.message == "resolve_refs: Unresolvable $ref: #/nope"

    def test_no_documents(self, people: Path, settings: FmSettings) -> None:
        result = _build(
            settings, "person.schema.json", "missing/*.md", template_path=Path("person.json")
        )
        assert result.error.message == "discover: No documents matched: missing/*.md"
        assert result.error.detail["error"]["kind"] == "EmptyInput"

    def test_only_prose_documents(
        self, people: Path, settings: FmSettings, write_doc: Callable[..., Path]
    ) -> None:
        write_doc("prose/a.md", None)
        result = _build(
            settings, "person.schema.json", "prose/*.md", template_path=Path("person.json")
        )
        assert result.error.message == "map: No documents with frontmatter to map"
        assert result.warnings

    def test_strict_mode_structure_mismatch(
        self, people: Path, settings: FmSettings, write_json: Callable[[str, Any], Path]
    ) -> None:
        write_json("extra.json", {"name": "{{name}}", "nickname": "{{name}}"})
        loose = _build(
            settings, "person.schema.json", "people/*.md", template_path=Path("extra.json")
        )
        assert loose.ok
        strict = _build(
            settings,
            "person.schema.json",
            "people/*.md",
            template_path=Path("extra.json"),
            strict=True,
        )
        assert not strict.ok
        assert strict.error.message == (
            "map: Structure mismatch: field 'nickname' is not defined in schema"
        )
        assert len(strict.warnings) == 2

    def test_invalid_frontmatter_is_fatal(
        self, people: Path, settings: FmSettings, workspace: Path
    ) -> None:
        (workspace / "people" / "broken.md").write_text(
            "---\nname: [oops\n---\n", encoding="utf-8"
        )
        result = _build(
            settings, "person.schema.json", "people/*.md", template_path=Path("person.json")
        )
        assert result.error.message.startswith("extract: Invalid frontmatter in")

    def test_bad_filter_expression(
        self,
        workspace: Path,
        settings: FmSettings,
        write_doc: Callable[..., Path],
        write_json: Callable[[str, Any], Path],
    ) -> None:
        write_json(
            "s.json",
            {
                "type": "object",
                "x-template": "t.json",
                "properties": {
                    "items": {
                        "type": "array",
                        "x-frontmatter-part": True,
                        "x-jmespath-filter": "[?",
                    }
                },
            },
        )
        write_json("t.json", {"items": []})
        write_doc("a.md", {"x": 1})
        result = _build(settings, "s.json", "*.md")
        assert result.error.message.startswith("directives:")
        assert result.error.detail["error"]["kind"] == str(ErrorKind.INVALID_SCHEMA)
