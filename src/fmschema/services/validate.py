"""ValidateService — check each document's frontmatter against the schema.

When the schema declares an ``x-frontmatter-part`` array, each document
is one element of that array and is validated against its ``items``
schema; otherwise the frontmatter is validated against the root schema.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

from fmschema.domain.directives import find_frontmatter_part
from fmschema.domain.errors import ErrorKind, domain_error
from fmschema.domain.models import Schema
from fmschema.domain.validation import SchemaValidator
from fmschema.services.base import BaseService, StageFailure, failure
from fmschema.services.result import ServiceResult
from fmschema.services.telemetry import trace_span, traced


def document_schema(schema: Schema) -> Schema:
    """The schema a single document's frontmatter has to satisfy."""
    part = find_frontmatter_part(schema.definition)
    if part is None:
        return schema
    _path, node = part
    if node.items is None:
        return schema
    return Schema(path=schema.path, definition=node.items)


class ValidateService(BaseService):
    """Validate documents without building anything."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._validator = SchemaValidator()

    @traced
    def validate(self, schema_path: Path, patterns: Sequence[str] = ()) -> ServiceResult:
        op = "validate"
        warnings: list[str] = []
        try:
            with trace_span("load_schema"):
                schema = self._load_schema(schema_path)
            with trace_span("discover"):
                paths = self._discover(patterns)
            with trace_span("extract"):
                documents = self._read_documents(paths, warnings)
        except StageFailure as exc:
            return failure(op, exc.error, warnings)

        target = document_schema(schema)
        issues: list[dict[str, Any]] = []
        invalid = 0
        with trace_span("validate"):
            for document in documents:
                data = document.frontmatter.data if document.frontmatter else {}
                violations = self._validator.validate_all(data, target)
                if violations:
                    invalid += 1
                issues.extend(
                    {
                        "path": str(document.path),
                        "field": v.path,
                        "kind": str(v.kind),
                        "message": v.message,
                    }
                    for v in violations
                )

        data = {
            "schema": str(schema_path),
            "documents": len(documents),
            "valid": len(documents) - invalid,
            "invalid": invalid,
            "files": [str(d.path) for d in documents],
        }
        if invalid:
            return ServiceResult.failure(
                op,
                domain_error(
                    ErrorKind.VALIDATION_ERROR,
                    f"{invalid} of {len(documents)} documents failed validation",
                    issues=issues,
                ),
                data=data,
                warnings=warnings,
            )
        return ServiceResult.success(op, data, warnings=warnings)
