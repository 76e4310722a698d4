"""Tests for StructuredAggregator — template classification and merge strategies."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from fmschema.domain.aggregation import (
    AccumulateFields,
    AggregatedStructure,
    MergeArrays,
    ReplaceValues,
    StructuredAggregator,
    TemplateStructure,
    parse_strategy,
)
from fmschema.domain.errors import ErrorKind
from fmschema.domain.models import AnalysisResult, Document, ExtractedData, MappedData, Template


def _result(mapped: dict[str, Any], name: str = "doc.md") -> AnalysisResult:
    return AnalysisResult(
        document=Document(path=Path(name)),
        extracted=ExtractedData(data={}),
        mapped=MappedData(data=mapped),
    )


def _structure(template: dict[str, Any]) -> TemplateStructure:
    result = StructuredAggregator().analyze_template_structure(
        Template(id="t", content=json.dumps(template))
    )
    assert result.ok
    return result.data


TEMPLATE = {"title": "", "count": 0, "tags": [], "meta": {"author": "", "links": []}}


class TestAnalyzeTemplateStructure:
    def test_classification(self) -> None:
        structure = _structure(TEMPLATE)
        assert structure.scalar_fields == {"title", "count"}
        assert structure.array_fields == {"tags"}
        nested = structure.nested_structures["meta"]
        assert nested.scalar_fields == {"author"}
        assert nested.array_fields == {"links"}

    def test_keeps_template_order(self) -> None:
        assert _structure(TEMPLATE).ordered_fields() == ["title", "count", "tags", "meta"]

    def test_invalid_json(self) -> None:
        result = StructuredAggregator().analyze_template_structure(
            Template(id="t", content="{nope")
        )
        assert result.error.kind is ErrorKind.PARSE_ERROR
        assert result.error.message.startswith("Failed to analyze template structure")

    def test_non_object(self) -> None:
        result = StructuredAggregator().analyze_template_structure(Template(id="t", content="[]"))
        assert result.error.kind is ErrorKind.INVALID_FORMAT
        assert result.error.message == "Template must be a valid JSON object"

    def test_non_json_format_is_empty(self) -> None:
        result = StructuredAggregator().analyze_template_structure(
            Template(id="t", format="yaml", content="a: []")
        )
        assert result.data == TemplateStructure.empty()

    def test_to_dict(self) -> None:
        d = _structure({"b": [], "a": 1}).to_dict()
        assert d["kind"] == "parent_template"
        assert d["array_fields"] == ["b"]
        assert d["scalar_fields"] == ["a"]


class TestAggregate:
    def test_empty_results(self) -> None:
        result = StructuredAggregator().aggregate([], _structure(TEMPLATE), ReplaceValues())
        assert not result.ok
        assert result.error.kind is ErrorKind.EMPTY_INPUT
        assert result.error.message == "Cannot aggregate empty results array"

    def test_arrays_concatenate_in_order(self) -> None:
        results = [_result({"tags": ["a", "b"]}), _result({"tags": ["b"]}), _result({"tags": "c"})]
        merged = StructuredAggregator().aggregate(results, _structure(TEMPLATE), ReplaceValues())
        assert merged.data.get_structure()["tags"] == ["a", "b", "b", "c"]

    def test_absent_array_is_empty_list(self) -> None:
        merged = StructuredAggregator().aggregate(
            [_result({"title": "x"})], _structure(TEMPLATE), ReplaceValues()
        )
        structure = merged.data.get_structure()
        assert structure["tags"] == []
        assert structure["meta"]["links"] == []
        assert "count" not in structure

    @pytest.mark.parametrize(
        ("strategy", "expected"),
        [
            (ReplaceValues(priority="latest"), "third"),
            (ReplaceValues(priority="first"), "first"),
            (MergeArrays(), "first"),
            (AccumulateFields(), "first"),
            (AccumulateFields(pattern="nomatch"), "first"),
        ],
    )
    def test_scalar_strategies(self, strategy: Any, expected: str) -> None:
        results = [_result({"title": t}) for t in ("first", "second", "third")]
        merged = StructuredAggregator().aggregate(results, _structure(TEMPLATE), strategy)
        assert merged.data.get_structure()["title"] == expected

    def test_nested_structures_recurse(self) -> None:
        results = [
            _result({"meta": {"author": "a", "links": ["l1"]}}),
            _result({"meta": {"author": "b", "links": ["l2"]}}),
        ]
        merged = StructuredAggregator().aggregate(results, _structure(TEMPLATE), ReplaceValues())
        assert merged.data.get_structure()["meta"] == {"author": "b", "links": ["l1", "l2"]}

    def test_accumulate_without_pattern_keeps_first_scalar(self) -> None:
        results = [_result({"count": 1, "tags": ["a"]}), _result({"count": 2, "tags": ["b"]})]
        merged = StructuredAggregator().aggregate(
            results, _structure(TEMPLATE), AccumulateFields()
        )
        structure = merged.data.get_structure()
        assert structure["count"] == 1
        assert structure["tags"] == ["a", "b"]

    def test_accumulate_matching_fields(self) -> None:
        results = [_result({"title": "a", "count": 1}), _result({"title": "b", "count": 2})]
        merged = StructuredAggregator().aggregate(
            results, _structure(TEMPLATE), AccumulateFields(pattern="cou*")
        )
        structure = merged.data.get_structure()
        assert structure["count"] == [1, 2]
        assert structure["title"] == "a"

    def test_merge_key_folds_duplicates(self) -> None:
        template = _structure({"items": []})
        results = [
            _result({"items": [{"id": 1, "a": "x"}, {"id": 2}]}),
            _result({"items": [{"id": 1, "a": "y", "b": "z"}, "loose"]}),
        ]
        merged = StructuredAggregator().aggregate(results, template, MergeArrays(merge_key="id"))
        assert merged.data.get_structure()["items"] == [
            {"id": 1, "a": "x", "b": "z"},
            {"id": 2},
            "loose",
        ]

    def test_get_structure_returns_copy(self) -> None:
        merged = StructuredAggregator().aggregate(
            [_result({"tags": ["a"]})], _structure(TEMPLATE), ReplaceValues()
        )
        merged.data.get_structure()["tags"].append("mutated")
        assert merged.data.get_structure()["tags"] == ["a"]

    def test_reads_only_mapped_data(self) -> None:
        result = AnalysisResult(
            document=Document(path=Path("d.md")),
            extracted=ExtractedData(data={"title": "from-extracted"}),
            mapped=MappedData(data={"title": "from-mapped"}),
        )
        merged = StructuredAggregator().aggregate([result], _structure(TEMPLATE), ReplaceValues())
        assert merged.data.get_structure()["title"] == "from-mapped"


class TestAggregatedStructure:
    @pytest.mark.parametrize("value", [None, [], "text"])
    def test_rejects_non_objects(self, value: Any) -> None:
        result = AggregatedStructure.create(value, ReplaceValues(), TemplateStructure.empty())
        assert result.error.kind is ErrorKind.INVALID_FORMAT
        assert result.error.message == "Aggregated structure must be a valid object"

    def test_exposes_strategy(self) -> None:
        strategy = MergeArrays(merge_key="id")
        created = AggregatedStructure.create({}, strategy, TemplateStructure.empty())
        assert created.data.strategy == strategy


class TestParseStrategy:
    def test_tagged_union(self) -> None:
        first = parse_strategy({"kind": "replace_values", "priority": "first"})
        assert first.data == ReplaceValues(priority="first")
        assert parse_strategy({"kind": "accumulate_fields"}).data == AccumulateFields()

    def test_unknown_kind(self) -> None:
        result = parse_strategy({"kind": "shuffle"})
        assert result.error.kind is ErrorKind.INVALID_FORMAT
