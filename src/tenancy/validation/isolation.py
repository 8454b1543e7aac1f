"""Tenant isolation check.

While the tenant schema is active, an unqualified smoke read must succeed
and the live search_path must contain exactly the tenant schema: no stale
previous tenant, no default or shared schema that could satisfy an
unqualified name from outside the tenant.
"""

from __future__ import annotations

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.core.context import ContextSwitcher
from src.tenancy.schemas.results import IsolationReport

logger = structlog.get_logger(__name__)

SMOKE_TABLE = "students"


class IsolationValidator:
    def __init__(self, catalog: SchemaCatalog, switcher: ContextSwitcher, smoke_table: str = SMOKE_TABLE) -> None:
        self._catalog = catalog
        self._switcher = switcher
        self._smoke_table = smoke_table

    async def validate(self, schema_name: str) -> IsolationReport:
        report = IsolationReport(schema_name=schema_name)

        if not await self._catalog.schema_exists(schema_name):
            report.errors.append(f"Tenant schema '{schema_name}' does not exist")
            report.valid = False
            return report

        has_smoke_table = self._smoke_table in await self._catalog.list_tables(schema_name)

        async with self._switcher.use(schema_name):
            if has_smoke_table:
                try:
                    await self._catalog.sample_rows(self._smoke_table, 1)
                    report.can_query_schema = True
                except Exception as exc:
                    report.can_query_schema = False
                    report.errors.append(f"Cannot query '{self._smoke_table}' in schema '{schema_name}': {exc}")
            report.search_path = await self._catalog.get_search_path()
            report.active_schema = await self._switcher.current()

        if report.search_path != [schema_name]:
            shown = ", ".join(report.search_path) or "(empty)"
            if schema_name not in report.search_path:
                report.errors.append(f"Schema '{schema_name}' not found in search path: {shown}")
            else:
                report.errors.append(f"Search path for '{schema_name}' exposes other schemas: {shown}")
        if report.active_schema != schema_name:
            report.errors.append(f"Active schema is '{report.active_schema}', expected '{schema_name}'")

        report.valid = not report.errors
        if report.errors:
            logger.warning("tenant_isolation_failed", schema_name=schema_name, search_path=report.search_path)
        return report
