"""Structural validation of a tenant schema against the expected catalog.

Severity:
- missing schema, required table or required column: error
- incompatible column type, nullability drift, unexpected column,
  missing expected index: warning
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.schemas.expected import (
    EXPECTED_TABLES,
    TENANT_INDEXES,
    ColumnSpec,
    IndexSpec,
    is_compatible_type,
)
from src.tenancy.schemas.results import StructuralReport

logger = structlog.get_logger(__name__)


class StructuralValidator:
    def __init__(
        self,
        catalog: SchemaCatalog,
        expected_tables: Mapping[str, Sequence[ColumnSpec]] = EXPECTED_TABLES,
        expected_indexes: Sequence[IndexSpec] = TENANT_INDEXES,
    ) -> None:
        self._catalog = catalog
        self._expected_tables = expected_tables
        self._expected_indexes = expected_indexes

    async def validate(self, schema_name: str) -> StructuralReport:
        report = StructuralReport(schema_name=schema_name)

        if not await self._catalog.schema_exists(schema_name):
            report.errors.append(f"Schema '{schema_name}' does not exist")
            report.valid = False
            return report

        existing = set(await self._catalog.list_tables(schema_name))

        for table_name, expected_columns in self._expected_tables.items():
            if table_name not in existing:
                report.errors.append(f"Required table '{table_name}' is missing")
                report.checks[table_name] = "missing"
                continue
            actual = await self._catalog.get_columns(schema_name, table_name)
            clean = self._compare_columns(report, table_name, expected_columns, actual)
            report.checks[table_name] = "ok" if clean else "mismatch"

        indexes = set(await self._catalog.list_indexes(schema_name))
        for index in self._expected_indexes:
            if index.table in existing and index.name not in indexes:
                report.warnings.append(f"Missing index '{index.name}' on table '{index.table}'")

        report.valid = not report.errors
        logger.debug(
            "structural_validation_complete",
            schema_name=schema_name,
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report

    @staticmethod
    def _compare_columns(report: StructuralReport, table_name: str, expected_columns, actual) -> bool:
        clean = True
        expected_names = set()
        for spec in expected_columns:
            expected_names.add(spec.name)
            info = actual.get(spec.name)
            if info is None:
                report.errors.append(f"Missing column '{spec.name}' in table '{table_name}'")
                clean = False
                continue
            if not is_compatible_type(info.data_type, spec.type):
                report.warnings.append(
                    f"Column '{table_name}.{spec.name}' has type '{info.data_type}', expected '{spec.type}'"
                )
                clean = False
            if info.nullable != spec.nullable:
                expected = "nullable" if spec.nullable else "NOT NULL"
                report.warnings.append(f"Column '{table_name}.{spec.name}' should be {expected}")
                clean = False

        for column_name in actual:
            if column_name not in expected_names:
                report.warnings.append(f"Unexpected column '{column_name}' in table '{table_name}'")
                clean = False
        return clean
