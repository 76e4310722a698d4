"""Ok / Err — the result contract of the core.

INVARIANT: Public domain operations never raise. They return ``Ok`` with
the payload or ``Err`` with a :class:`DomainError`. Callers branch on
``result.ok`` and return early, forwarding ``Err`` values unchanged or
wrapped with :func:`~fmschema.domain.errors.stage_error`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from fmschema.domain.errors import DomainError, ErrorKind, domain_error


@dataclass(frozen=True, slots=True)
class Ok[T]:
    """Successful result carrying *data*."""

    data: T

    @property
    def ok(self) -> Literal[True]:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "data": self.data}


@dataclass(frozen=True, slots=True)
class Err:
    """Failed result carrying a :class:`DomainError`."""

    error: DomainError

    @property
    def ok(self) -> Literal[False]:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "error": {"kind": str(self.error.kind), "message": self.error.message}}


type Result[T] = Ok[T] | Err


def fail(kind: ErrorKind, message: str, **detail: Any) -> Err:
    """Build an ``Err`` in one call."""
    return Err(domain_error(kind, message, **detail))
