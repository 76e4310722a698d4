"""InspectService — show how a template will be aggregated."""

from __future__ import annotations

from pathlib import Path

from fmschema.domain.aggregation import StructuredAggregator
from fmschema.infrastructure.repositories import normalize_template
from fmschema.services.base import BaseService, StageFailure, failure, unwrap
from fmschema.services.result import ServiceResult
from fmschema.services.telemetry import traced


class InspectService(BaseService):
    @traced
    def inspect_template(self, path: Path) -> ServiceResult:
        """Classify *path*'s keys into array, scalar, and nested fields."""
        op = "inspect"
        try:
            template = unwrap(self._templates.load(path), "load_template")
            analysable = unwrap(normalize_template(template), "analyze")
            structure = unwrap(
                StructuredAggregator().analyze_template_structure(analysable), "analyze"
            )
        except StageFailure as exc:
            return failure(op, exc.error, [])

        return ServiceResult.success(
            op,
            {
                "template": str(path),
                "format": template.format,
                "fields": structure.ordered_fields(),
                "structure": structure.to_dict(),
            },
        )
