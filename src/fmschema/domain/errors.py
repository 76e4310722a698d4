"""Domain error taxonomy.

Errors are values, not exceptions: every public core operation returns an
:class:`~fmschema.domain.result.Err` carrying a :class:`DomainError`. The
service layer maps ``kind`` onto ``ServiceError.code`` unchanged.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ErrorKind(StrEnum):
    """Closed set of error kinds produced by the core and its collaborators."""

    EMPTY_INPUT = "EmptyInput"
    INVALID_FORMAT = "InvalidFormat"
    TEMPLATE_MAPPING_FAILED = "TemplateMappingFailed"
    PARSE_ERROR = "ParseError"
    NOT_FOUND = "NotFound"
    VALIDATION_ERROR = "ValidationError"
    SCHEMA_NOT_FOUND = "SchemaNotFound"
    INVALID_SCHEMA = "InvalidSchema"
    SCHEMA_RESOLUTION_ERROR = "SchemaResolutionError"
    FILE_NOT_FOUND = "FileNotFound"
    READ_ERROR = "ReadError"
    WRITE_ERROR = "WriteError"
    PROCESSING_STAGE_ERROR = "ProcessingStageError"


class DomainError(BaseModel):
    """Structured error payload: ``{kind, message, detail}``."""

    model_config = {"frozen": True}

    kind: ErrorKind
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def domain_error(kind: ErrorKind, message: str, **detail: Any) -> DomainError:
    """Shorthand constructor used throughout the core."""
    return DomainError(kind=kind, message=message, detail=detail)


def stage_error(stage: str, error: DomainError) -> DomainError:
    """Wrap *error* with the pipeline stage it surfaced from.

    Already-wrapped errors are returned unchanged so a stage name is
    never applied twice.
    """
    if error.kind is ErrorKind.PROCESSING_STAGE_ERROR:
        return error
    return DomainError(
        kind=ErrorKind.PROCESSING_STAGE_ERROR,
        message=f"{stage}: {error.message}",
        detail={"stage": stage, "error": error.to_dict()},
    )


def root_cause(error: DomainError) -> DomainError:
    """Unwrap a ``ProcessingStageError`` to the error it carries."""
    if error.kind is not ErrorKind.PROCESSING_STAGE_ERROR:
        return error
    inner = error.detail.get("error")
    if not isinstance(inner, dict):
        return error
    return DomainError.model_validate(inner)
