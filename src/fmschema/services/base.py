"""BaseService — shared plumbing for fmschema services.

Every service receives the resolved :class:`FmSettings` plus the schema
and template repositories. Discovery and document reading live here so
``build`` and ``validate`` see the same document set for the same
patterns.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import structlog

from fmschema.config.settings import FmSettings
from fmschema.domain.directives import RefResolver
from fmschema.domain.errors import (
    DomainError,
    ErrorKind,
    domain_error,
    root_cause,
    stage_error,
)
from fmschema.domain.models import Document, Schema
from fmschema.domain.result import Err, Result
from fmschema.infrastructure.filesystem import discover_documents, read_document
from fmschema.infrastructure.repositories import SchemaRepository, TemplateRepository
from fmschema.services.result import ServiceResult

log = structlog.get_logger(__name__)


class StageFailure(Exception):
    """Carries a stage-wrapped :class:`DomainError` out of a pipeline step."""

    def __init__(self, error: DomainError) -> None:
        super().__init__(error.message)
        self.error = error


def unwrap[T](result: Result[T], stage: str) -> T:
    """Return ``result.data`` or raise :class:`StageFailure` tagged with *stage*."""
    if isinstance(result, Err):
        raise StageFailure(stage_error(stage, result.error))
    return result.data


class BaseService:
    """Base for all service-layer classes.

    Usage::

        class BuildService(BaseService):
            @traced
            def build(self, schema_path: Path, ...) -> ServiceResult:
                try:
                    schema = self._load_schema(schema_path)
                    ...
                except StageFailure as exc:
                    return ServiceResult.failure("build", exc.error)
    """

    def __init__(
        self,
        settings: FmSettings | None = None,
        *,
        schemas: SchemaRepository | None = None,
        templates: TemplateRepository | None = None,
    ) -> None:
        self._settings = settings or FmSettings()
        self._schemas = schemas or SchemaRepository()
        self._templates = templates or TemplateRepository()
        self._resolver = RefResolver()

    @property
    def settings(self) -> FmSettings:
        return self._settings

    # -- shared pipeline steps ---------------------------------------------

    def _load_schema(self, path: Path) -> Schema:
        loaded = unwrap(self._schemas.load(path), "load_schema")
        return unwrap(self._resolver.resolve_schema(loaded), "resolve_refs")

    def _discover(self, patterns: Sequence[str]) -> list[Path]:
        discovery = self._settings.discovery
        effective = list(patterns) or [discovery.pattern]
        paths = discover_documents(
            self._settings.project_root, effective, skip_dirs=discovery.skip_dirs
        )
        log.debug("documents.discovered", patterns=effective, count=len(paths))
        if not paths:
            raise StageFailure(
                stage_error(
                    "discover",
                    domain_error(
                        ErrorKind.EMPTY_INPUT,
                        f"No documents matched: {', '.join(effective)}",
                        patterns=effective,
                    ),
                )
            )
        return paths

    def _read_documents(self, paths: Sequence[Path], warnings: list[str]) -> list[Document]:
        """Read *paths* in discovery order; drop (and warn about) files without frontmatter."""
        documents: list[Document] = []
        for result in self._parallel(read_document, paths):
            document = unwrap(result, "extract")
            if not document.has_frontmatter:
                warnings.append(f"{document.path}: no frontmatter, skipped")
                continue
            documents.append(document)
        return documents

    def _parallel[T, R](self, fn: Callable[[T], R], items: Iterable[T]) -> list[R]:
        """Map *fn* over *items*, threaded when ``[build] workers`` > 1; order is kept."""
        workers = self._settings.build.workers
        if workers <= 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(fn, items))


def failure(op: str, error: DomainError, warnings: list[str]) -> ServiceResult:
    cause = root_cause(error)
    log.debug(
        "service.failed",
        op=op,
        stage=error.detail.get("stage"),
        kind=str(cause.kind),
        message=cause.message,
    )
    return ServiceResult.failure(op, error, warnings=warnings)
