"""Domain layer — values, templates, schemas, and aggregation rules.

This layer depends only on stdlib, pydantic, structlog, and jmespath.
It must never import from services, infrastructure, commands, or config.
Every public operation returns a :mod:`fmschema.domain.result` value.
"""
