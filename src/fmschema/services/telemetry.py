"""Stage timing for service calls.

Telemetry is off unless the CLI runs with ``--verbose``. While off, every
hook costs one ``ContextVar`` lookup. While on, ``@traced`` opens a root span
per service call, ``trace_span`` hangs one child per pipeline stage below it,
and the finished tree lands in ``ServiceResult.meta["telemetry"]``.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

import structlog

from fmschema.services.result import ServiceResult

log = structlog.get_logger("fmschema.telemetry")

_verbose_enabled: ContextVar[bool] = ContextVar("_verbose_enabled", default=False)
_current_span: ContextVar[Span | None] = ContextVar("_current_span", default=None)


@dataclass(slots=True)
class Span:
    """One timed stage; children are the stages run inside it."""

    name: str
    parent: Span | None = None
    children: list[Span] = field(default_factory=list)
    notes: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    started_ns: int = field(default_factory=time.perf_counter_ns)
    finished_ns: int | None = None

    @property
    def finished(self) -> bool:
        return self.finished_ns is not None

    @property
    def duration_ms(self) -> float:
        """Elapsed time once finished; 0.0 while the stage is still open."""
        if self.finished_ns is None:
            return 0.0
        return (self.finished_ns - self.started_ns) / 1_000_000

    def end(self) -> None:
        self.finished_ns = self.finished_ns or time.perf_counter_ns()

    def annotate(self, key: str, value: Any) -> None:
        self.notes[key] = value

    def child(self, name: str) -> Span:
        span = Span(name=name, parent=self)
        self.children.append(span)
        return span

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "duration_ms": round(self.duration_ms, 2)}
        optional = {
            "error": self.error,
            "annotations": dict(self.notes) or None,
            "children": [c.to_dict() for c in self.children] or None,
        }
        out.update((k, v) for k, v in optional.items() if v is not None)
        return out


@contextmanager
def _activated(span: Span) -> Iterator[Span]:
    """Make *span* current for the duration of the block, closing it on exit."""
    token = _current_span.set(span)
    try:
        yield span
    except Exception as exc:
        span.error = type(exc).__name__
        raise
    finally:
        span.end()
        _current_span.reset(token)


@contextmanager
def trace_span(name: str) -> Iterator[Span | None]:
    """Time a pipeline stage under the active service span.

    Yields ``None`` when telemetry is off or no ``@traced`` call is running,
    so callers must guard annotations with ``if span:``.
    """
    parent = _current_span.get() if _verbose_enabled.get() else None
    if parent is None:
        yield None
        return
    with _activated(parent.child(name)) as span:
        yield span


def traced[**P, R](func: Callable[P, R]) -> Callable[P, R]:
    """Time a service method and attach its span tree to the returned result."""

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        if not _verbose_enabled.get():
            return func(*args, **kwargs)

        root = Span(name=func.__qualname__)
        try:
            with _activated(root):
                result = func(*args, **kwargs)
        except Exception:
            log.debug("service.raised", service=root.name, error=root.error)
            raise
        if isinstance(result, ServiceResult):
            meta = {**(result.meta or {}), "telemetry": root.to_dict()}
            result = result.model_copy(update={"meta": meta})  # type: ignore[assignment]
        log.debug(
            "service.timed",
            service=root.name,
            duration_ms=round(root.duration_ms, 2),
            stages=len(root.children),
            ok=bool(getattr(result, "ok", True)),
        )
        return result

    return wrapper


def enable_telemetry() -> None:
    """Turn span collection on for the current context."""
    _verbose_enabled.set(True)


def disable_telemetry() -> None:
    _verbose_enabled.set(False)


def get_current_span() -> Span | None:
    """The innermost open span, or ``None`` when telemetry is off."""
    return _current_span.get() if _verbose_enabled.get() else None
