"""Active-schema routing for a catalog connection.

The engine resolves unqualified table names through the connection's
search_path, which is mutable per-connection state. ContextSwitcher owns that
state for one catalog: ``use()`` is the scoped way to route into a tenant
schema and is guaranteed to reset to the default schema on every exit path.

The schema selected by the innermost ``use()`` block is also published as a
contextvar so collaborators deeper in the call stack can read it via
``get_current_schema()`` without a catalog handle.
"""

from __future__ import annotations

import contextvars
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.core.errors import SchemaNotFound
from src.tenancy.core.identifiers import validate_identifier

logger = structlog.get_logger(__name__)

# ── Schema Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SchemaContext:
    """Immutable handle for the schema active inside a ``use()`` block."""

    schema_name: str
    default_schema: str


_schema_context: contextvars.ContextVar[SchemaContext] = contextvars.ContextVar("schema_context")


def get_current_schema() -> SchemaContext:
    """Get the schema context of the enclosing ``use()`` block.

    Raises RuntimeError outside of any scoped acquisition.
    """
    try:
        return _schema_context.get()
    except LookupError:
        raise RuntimeError("No schema context set -- call is not schema-scoped")


# ── Context Switcher ────────────────────────────────────────────────────────


class ContextSwitcher:
    """Tracks and changes the active schema of a single catalog connection."""

    def __init__(self, catalog: SchemaCatalog, default_schema: str = "public") -> None:
        self._catalog = catalog
        self._default_schema = validate_identifier(default_schema)
        self._current: str | None = None

    @property
    def default_schema(self) -> str:
        return self._default_schema

    async def switch_to(self, schema_name: str) -> None:
        """Route unqualified names to ``schema_name`` only.

        The search_path is set to exactly the target schema so nothing from
        the default or shared schema can resolve through it.
        """
        validate_identifier(schema_name)
        if not await self._catalog.schema_exists(schema_name):
            raise SchemaNotFound(schema_name)
        await self._catalog.set_search_path([schema_name])
        self._current = schema_name
        logger.debug("schema_context_switched", schema_name=schema_name)

    async def current(self) -> str | None:
        """Active schema, falling back to the live search_path when untracked."""
        if self._current is not None:
            return self._current
        path = await self._catalog.get_search_path()
        return path[0] if path else None

    async def reset_to_default(self) -> None:
        await self._catalog.set_search_path([self._default_schema])
        self._current = None

    @asynccontextmanager
    async def use(self, schema_name: str) -> AsyncGenerator[SchemaContext, None]:
        """Scoped acquisition: switch in, yield, always reset.

        Usage:
            async with switcher.use("tenant_acme") as ctx:
                rows = await catalog.sample_rows("students", 10)
        """
        ctx = SchemaContext(schema_name=schema_name, default_schema=self._default_schema)
        token: contextvars.Token[SchemaContext] | None = None
        try:
            await self.switch_to(schema_name)
            token = _schema_context.set(ctx)
            yield ctx
        finally:
            if token is not None:
                _schema_context.reset(token)
            await self.reset_to_default()
