"""BuildService — the end-to-end schema-directed build.

Pipeline (each stage's error is wrapped with its stage name)::

    load_schema -> resolve_refs -> load_template -> discover -> extract
      -> map -> aggregate -> directives -> serialize -> write

INVARIANT: aggregation starts only after every document has been mapped,
and results keep sorted discovery order regardless of ``[build] workers``.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from fmschema.domain.aggregation import (
    AggregationStrategy,
    StructuredAggregator,
    parse_strategy,
)
from fmschema.domain.directives import DirectiveInterpreter
from fmschema.domain.errors import DomainError, ErrorKind, domain_error, stage_error
from fmschema.domain.mapper import NoSchema, TemplateMapper, ValidationMode, WithSchema
from fmschema.domain.models import AnalysisResult, Document, ExtractedData, Schema, Template
from fmschema.domain.result import Err, Ok, Result, fail
from fmschema.infrastructure.filesystem import write_output
from fmschema.infrastructure.repositories import normalize_template
from fmschema.output.serializers import format_for_path, serialize
from fmschema.services.base import BaseService, StageFailure, failure, unwrap
from fmschema.services.result import ServiceResult
from fmschema.services.telemetry import trace_span, traced

log = structlog.get_logger(__name__)

STRATEGY_NAMES: tuple[str, ...] = ("replace-latest", "replace-first", "merge-arrays", "accumulate")


def strategy_from_name(
    name: str,
    *,
    merge_key: str | None = None,
    pattern: str | None = None,
) -> Result[AggregationStrategy]:
    """Translate a CLI/config strategy name into an :data:`AggregationStrategy`."""
    payloads: dict[str, dict[str, Any]] = {
        "replace-latest": {"kind": "replace_values", "priority": "latest"},
        "replace-first": {"kind": "replace_values", "priority": "first"},
        "merge-arrays": {"kind": "merge_arrays", "merge_key": merge_key},
        "accumulate": {"kind": "accumulate_fields", "pattern": pattern},
    }
    payload = payloads.get(name)
    if payload is None:
        return fail(
            ErrorKind.INVALID_FORMAT,
            f"Unknown strategy '{name}' (expected one of {', '.join(STRATEGY_NAMES)})",
        )
    return parse_strategy(payload)


class BuildService(BaseService):
    """Turn a schema, a template, and a set of markdown files into one output."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._mapper = TemplateMapper()
        self._aggregator = StructuredAggregator()
        self._interpreter = DirectiveInterpreter(self._mapper)

    @traced
    def build(
        self,
        schema_path: Path,
        patterns: Sequence[str] = (),
        *,
        template_path: Path | None = None,
        output_path: Path | None = None,
        output_format: str | None = None,
        strategy: AggregationStrategy | None = None,
        strict: bool | None = None,
        dry_run: bool = False,
    ) -> ServiceResult:
        """Run the full pipeline and return the rendered output in ``data``.

        Data keys: ``schema``, ``template``, ``documents``, ``skipped``,
        ``strategy``, ``format``, ``output`` (None when not written to a
        file), ``dry_run``, ``content``, ``structure``.
        """
        op = "build"
        warnings: list[str] = []
        build_cfg = self._settings.build
        try:
            with trace_span("load_schema"):
                schema = self._load_schema(schema_path)

            with trace_span("load_template"):
                template = self._root_template(schema, schema_path, template_path)

            if strategy is None:
                strategy = unwrap(
                    strategy_from_name(
                        build_cfg.strategy,
                        merge_key=build_cfg.merge_key,
                        pattern=build_cfg.accumulate_pattern,
                    ),
                    "aggregate",
                )
            strict = build_cfg.strict if strict is None else strict
            mode: ValidationMode = WithSchema(schema) if strict else NoSchema()

            with trace_span("discover"):
                paths = self._discover(patterns)
            with trace_span("extract") as span:
                documents = self._read_documents(paths, warnings)
                if span:
                    span.annotate("documents", len(documents))

            with trace_span("map"):
                results = self._map_documents(documents, template, mode, warnings)

            with trace_span("aggregate"):
                analysable = unwrap(normalize_template(template), "aggregate")
                structure = unwrap(
                    self._aggregator.analyze_template_structure(analysable), "aggregate"
                )
                aggregated = unwrap(
                    self._aggregator.aggregate(results, structure, strategy), "aggregate"
                )

            with trace_span("directives"):
                outcome = unwrap(
                    self._interpreter.apply(
                        aggregated.get_structure(),
                        schema,
                        results,
                        template_loader=self._templates.loader(schema_path.parent),
                    ),
                    "directives",
                )
                warnings.extend(outcome.warnings)

            fmt = self._output_format(schema, output_path, output_format)
            with trace_span("serialize"):
                content = unwrap(
                    serialize(outcome.structure, fmt, project_root=self._settings.project_root),
                    "serialize",
                )

            if output_path is not None and not dry_run:
                with trace_span("write"):
                    unwrap(write_output(output_path, content), "write")
        except StageFailure as exc:
            return failure(op, exc.error, warnings)

        log.debug(
            "build.complete",
            documents=len(results),
            skipped=len(paths) - len(results),
            format=fmt,
        )
        return ServiceResult.success(
            op,
            {
                "schema": str(schema_path),
                "template": template.id,
                "documents": len(results),
                "skipped": len(paths) - len(results),
                "strategy": strategy.kind,
                "format": fmt,
                "output": str(output_path) if output_path is not None else None,
                "dry_run": dry_run,
                "content": content,
                "structure": outcome.structure,
            },
            warnings=warnings,
        )

    # -- stages ------------------------------------------------------------

    def _root_template(
        self, schema: Schema, schema_path: Path, template_path: Path | None
    ) -> Template:
        if template_path is not None:
            return unwrap(self._templates.load(template_path), "load_template")
        declared = schema.definition.directives.template
        if declared is None:
            raise StageFailure(
                stage_error(
                    "load_template",
                    domain_error(
                        ErrorKind.INVALID_SCHEMA,
                        "No template given: pass --template or declare x-template "
                        "on the schema root",
                        schema=str(schema_path),
                    ),
                )
            )
        return unwrap(self._templates.loader(schema_path.parent)(declared), "load_template")

    def _map_documents(
        self,
        documents: Sequence[Document],
        template: Template,
        mode: ValidationMode,
        warnings: list[str],
    ) -> list[AnalysisResult]:
        """Map every document; failures are skipped unless every document fails."""

        def _map_one(document: Document) -> Result[AnalysisResult]:
            data = document.frontmatter.data if document.frontmatter else {}
            extracted = ExtractedData(data=data)
            mapped = self._mapper.map(extracted, template, mode)
            if isinstance(mapped, Err):
                return mapped
            return Ok(AnalysisResult(document=document, extracted=extracted, mapped=mapped.data))

        results: list[AnalysisResult] = []
        first_error: DomainError | None = None
        for document, outcome in zip(documents, self._parallel(_map_one, documents), strict=True):
            if isinstance(outcome, Err):
                first_error = first_error or outcome.error
                warnings.append(f"{document.path}: {outcome.error.message}")
                continue
            results.append(outcome.data)

        if not results and first_error is not None:
            raise StageFailure(stage_error("map", first_error))
        if not results:
            raise StageFailure(
                stage_error(
                    "map",
                    domain_error(ErrorKind.EMPTY_INPUT, "No documents with frontmatter to map"),
                )
            )
        return results

    def _output_format(
        self, schema: Schema, output_path: Path | None, output_format: str | None
    ) -> str:
        if output_format:
            return output_format
        declared = schema.definition.directives.template_format
        if declared:
            return declared
        if output_path is not None:
            guessed = format_for_path(output_path)
            if guessed:
                return guessed
        return self._settings.build.format
