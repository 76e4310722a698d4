"""StructuredAggregator — merges per-document mapped results into one structure.

A template's shape is first classified into a :class:`TemplateStructure`
(which keys hold arrays, which hold scalars, which hold nested objects).
Aggregation then walks that classification and merges each result's
``MappedData`` according to an :data:`AggregationStrategy`:

- scalar fields: ``replace_values{latest}`` keeps the last provider,
  ``replace_values{first}``, ``merge_arrays`` and ``accumulate_fields``
  keep the first (scalars identify the primary record).
- array fields: values of every result concatenated in result order;
  a non-list value contributes one element. No deduplication.
- nested structures: recurse into each result's sub-object.

INVARIANT: Aggregation is a barrier. It needs the complete, ordered list
of results because "first" and "latest" are positional.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping, Sequence
from fnmatch import fnmatchcase
from typing import Annotated, Any, Literal, Self

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fmschema.domain.errors import ErrorKind
from fmschema.domain.models import AnalysisResult, Template
from fmschema.domain.result import Ok, Result, fail

log = structlog.get_logger(__name__)

_MISSING = object()


# ---------------------------------------------------------------------------
# Strategies (closed tagged union)
# ---------------------------------------------------------------------------


class ReplaceValues(BaseModel):
    """Scalars are replaced; ``priority`` picks the latest or first provider."""

    model_config = {"frozen": True}

    kind: Literal["replace_values"] = "replace_values"
    priority: Literal["latest", "first"] = "latest"


class MergeArrays(BaseModel):
    """Arrays are concatenated; scalars keep the first provider.

    With ``merge_key`` set, object elements sharing the same key value are
    merged into the first-seen element instead of being appended.
    """

    model_config = {"frozen": True}

    kind: Literal["merge_arrays"] = "merge_arrays"
    merge_key: str | None = None


class AccumulateFields(BaseModel):
    """Arrays are concatenated and scalars keep the first provider.

    Scalars whose name matches the ``pattern`` glob are instead collected into
    a list of every provider's value. Without a pattern nothing is collected.
    """

    model_config = {"frozen": True}

    kind: Literal["accumulate_fields"] = "accumulate_fields"
    pattern: str | None = None


AggregationStrategy = ReplaceValues | MergeArrays | AccumulateFields

StrategyField = Annotated[AggregationStrategy, Field(discriminator="kind")]


class StrategyEnvelope(BaseModel):
    """Parses a strategy from config or CLI payloads via the ``kind`` tag."""

    strategy: StrategyField


def parse_strategy(payload: Mapping[str, Any]) -> Result[AggregationStrategy]:
    """Build a strategy from a ``{"kind": ..., ...}`` mapping."""
    try:
        envelope = StrategyEnvelope.model_validate({"strategy": dict(payload)})
    except ValidationError as exc:
        reason = exc.errors()[0]["msg"]
        return fail(ErrorKind.INVALID_FORMAT, f"Invalid aggregation strategy: {reason}")
    return Ok(envelope.strategy)


# ---------------------------------------------------------------------------
# Template structure
# ---------------------------------------------------------------------------


class TemplateStructure(BaseModel):
    """Recursive classification of a template's object keys."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["parent_template"] = "parent_template"
    array_fields: frozenset[str] = frozenset()
    scalar_fields: frozenset[str] = frozenset()
    nested_structures: dict[str, TemplateStructure] = Field(default_factory=dict)
    field_order: tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> Self:
        return cls()

    @classmethod
    def classify(cls, template: Mapping[str, Any]) -> Self:
        arrays: set[str] = set()
        scalars: set[str] = set()
        nested: dict[str, TemplateStructure] = {}
        for key, value in template.items():
            if isinstance(value, list):
                arrays.add(key)
            elif isinstance(value, dict):
                nested[key] = cls.classify(value)
            else:
                scalars.add(key)
        return cls(
            array_fields=frozenset(arrays),
            scalar_fields=frozenset(scalars),
            nested_structures=nested,
            field_order=tuple(template.keys()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "array_fields": sorted(self.array_fields),
            "scalar_fields": sorted(self.scalar_fields),
            "nested_structures": {k: v.to_dict() for k, v in self.nested_structures.items()},
        }

    def ordered_fields(self) -> list[str]:
        """Classified keys in template order (declaration order when known)."""
        known = [*self.scalar_fields, *self.array_fields, *self.nested_structures]
        ordered = [k for k in self.field_order if k in known]
        ordered.extend(sorted(k for k in set(known) if k not in ordered))
        return ordered


# ---------------------------------------------------------------------------
# Aggregated structure
# ---------------------------------------------------------------------------


class AggregatedStructure:
    """Final merged value plus the strategy and classification that produced it.

    INVARIANT: ``structure`` is always a dict, never a list or None.
    ``get_structure()`` returns a deep copy.
    """

    def __init__(
        self,
        structure: dict[str, Any],
        strategy: AggregationStrategy,
        template_structure: TemplateStructure,
    ) -> None:
        self._structure = structure
        self._strategy = strategy
        self._template_structure = template_structure

    @classmethod
    def create(
        cls,
        structure: Any,
        strategy: AggregationStrategy,
        template_structure: TemplateStructure,
    ) -> Result[AggregatedStructure]:
        if not isinstance(structure, dict):
            return fail(ErrorKind.INVALID_FORMAT, "Aggregated structure must be a valid object")
        return Ok(cls(copy.deepcopy(structure), strategy, template_structure))

    @property
    def strategy(self) -> AggregationStrategy:
        return self._strategy

    @property
    def template_structure(self) -> TemplateStructure:
        return self._template_structure

    def get_structure(self) -> dict[str, Any]:
        return copy.deepcopy(self._structure)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class StructuredAggregator:
    """Classify templates and merge mapped results."""

    def analyze_template_structure(self, template: Template) -> Result[TemplateStructure]:
        """Classify a JSON template's keys.

        Non-JSON templates yield an empty structure; callers that want
        YAML templates aggregated convert them to JSON first.
        """
        if template.format != "json":
            return Ok(TemplateStructure.empty())
        try:
            parsed = json.loads(template.content)
        except json.JSONDecodeError as exc:
            return fail(ErrorKind.PARSE_ERROR, f"Failed to analyze template structure: {exc}")
        if not isinstance(parsed, dict):
            return fail(ErrorKind.INVALID_FORMAT, "Template must be a valid JSON object")
        return Ok(TemplateStructure.classify(parsed))

    def aggregate(
        self,
        results: Sequence[AnalysisResult],
        template_structure: TemplateStructure,
        strategy: AggregationStrategy,
    ) -> Result[AggregatedStructure]:
        """Merge *results* into one structure following *strategy*."""
        if not results:
            return fail(ErrorKind.EMPTY_INPUT, "Cannot aggregate empty results array")

        records = [r.mapped.data for r in results]
        merged = self._merge(records, template_structure, strategy)
        log.debug(
            "aggregate.complete",
            strategy=strategy.kind,
            results=len(results),
            fields=len(merged),
        )
        return AggregatedStructure.create(merged, strategy, template_structure)

    def _merge(
        self,
        records: Sequence[Any],
        structure: TemplateStructure,
        strategy: AggregationStrategy,
    ) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        objects = [r for r in records if isinstance(r, dict)]

        for key in structure.ordered_fields():
            values = [r[key] for r in objects if key in r]
            if key in structure.array_fields:
                merged[key] = _merge_array(values, strategy)
            elif key in structure.nested_structures:
                merged[key] = self._merge(values, structure.nested_structures[key], strategy)
            else:
                value = _merge_scalar(key, values, strategy)
                if value is not _MISSING:
                    merged[key] = value

        return merged


def _merge_scalar(
    key: str,
    values: list[Any],
    strategy: AggregationStrategy,
) -> Any:
    if not values:
        return _MISSING
    if isinstance(strategy, ReplaceValues):
        chosen = values[-1] if strategy.priority == "latest" else values[0]
        return copy.deepcopy(chosen)
    if (
        isinstance(strategy, AccumulateFields)
        and strategy.pattern is not None
        and fnmatchcase(key, strategy.pattern)
    ):
        return copy.deepcopy(values)
    return copy.deepcopy(values[0])


def _merge_array(
    values: list[Any],
    strategy: AggregationStrategy,
) -> list[Any]:
    combined: list[Any] = []
    for value in values:
        if isinstance(value, list):
            combined.extend(copy.deepcopy(value))
        else:
            combined.append(copy.deepcopy(value))
    if isinstance(strategy, MergeArrays) and strategy.merge_key:
        return _merge_by_key(combined, strategy.merge_key)
    return combined


def _merge_by_key(items: list[Any], merge_key: str) -> list[Any]:
    """Fold object elements that share ``merge_key``; earlier values win."""
    output: list[Any] = []
    index: dict[str, dict[str, Any]] = {}
    for item in items:
        if not isinstance(item, dict) or merge_key not in item:
            output.append(item)
            continue
        marker = json.dumps(item[merge_key], sort_keys=True, default=str)
        existing = index.get(marker)
        if existing is None:
            index[marker] = item
            output.append(item)
            continue
        for field, value in item.items():
            existing.setdefault(field, value)
    return output
