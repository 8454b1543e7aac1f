"""Data migration completeness: legacy shared rows vs. tenant schema rows.

Legacy tables live in one shared schema and carry a tenant column; the
tenant's share of each table must arrive intact in its own schema. Fewer
rows in the tenant schema is data loss (error); more rows is only a warning.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.schemas.expected import MIGRATED_TABLES
from src.tenancy.schemas.results import DataMigrationReport, RecordCount
from src.tenancy.schemas.tenant import TenantRecord

logger = structlog.get_logger(__name__)


class DataMigrationChecker:
    def __init__(
        self,
        catalog: SchemaCatalog,
        legacy_schema: str = "public",
        tenant_column: str = "tenant_id",
        tables: Sequence[str] = MIGRATED_TABLES,
    ) -> None:
        self._catalog = catalog
        self._legacy_schema = legacy_schema
        self._tenant_column = tenant_column
        self._tables = tables

    async def check(self, tenant: TenantRecord, schema_name: str) -> DataMigrationReport:
        report = DataMigrationReport()
        legacy_tables = set(await self._catalog.list_tables(self._legacy_schema))
        tenant_tables = set(await self._catalog.list_tables(schema_name))

        for table in self._tables:
            if table in legacy_tables:
                old_count = await self._catalog.count_legacy_rows(
                    self._legacy_schema, table, self._tenant_column, tenant.id
                )
            else:
                logger.warning("legacy_table_missing", legacy_schema=self._legacy_schema, table=table)
                old_count = 0

            new_count = await self._catalog.count_rows(schema_name, table) if table in tenant_tables else 0
            report.record_counts[table] = RecordCount(old_count=old_count, new_count=new_count)

            if new_count < old_count:
                report.errors.append(f"Data loss detected in {table}: {old_count} -> {new_count}")
            elif new_count > old_count:
                report.warnings.append(f"Extra records in {table}: {old_count} -> {new_count}")

        report.valid = not report.errors
        return report
