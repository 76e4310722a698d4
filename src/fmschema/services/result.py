"""What every service call hands back to the CLI.

Services never raise for expected failures; they return a ``ServiceResult``
with ``ok=False``. Domain ``Err`` values cross into this layer only through
:meth:`ServiceResult.failure`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fmschema.domain.errors import DomainError


class ServiceError(BaseModel):
    """``code`` is the domain error kind; ``detail`` carries its context."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, error: DomainError) -> ServiceError:
        return cls(code=str(error.kind), message=error.message, detail=dict(error.detail))


class ServiceResult(BaseModel):
    """Outcome of one service operation named by ``op``.

    ``data`` is the operation's payload, ``warnings`` lists documents or
    fields that were skipped without failing the run, and ``meta`` holds
    the stage timings when telemetry is on.
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: ServiceError | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def success(
        cls, op: str, data: dict[str, Any], *, warnings: list[str] | None = None
    ) -> ServiceResult:
        return cls(ok=True, op=op, data=data, warnings=list(warnings or []))

    @classmethod
    def failure(
        cls,
        op: str,
        error: DomainError,
        *,
        data: dict[str, Any] | None = None,
        warnings: list[str] | None = None,
    ) -> ServiceResult:
        return cls(
            ok=False,
            op=op,
            data=dict(data or {}),
            error=ServiceError.from_domain(error),
            warnings=list(warnings or []),
        )
