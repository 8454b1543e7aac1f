"""Referential and data integrity checks inside one tenant schema.

Every rule is evaluated with fully qualified table names, so no routing
context is needed. Rules touching a table that does not exist are skipped
and listed in ``IntegrityReport.skipped``; the structural validator already
reports the missing table.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.schemas.expected import (
    COMPUTED_FIELD_RULES,
    CONSISTENCY_RULES,
    FOREIGN_KEYS,
    FUTURE_DATE_RULES,
    RANGE_RULES,
    UNIQUE_GROUPS,
    ComputedFieldRule,
    ConsistencyRule,
    ForeignKeyRule,
    FutureDateRule,
    RangeRule,
    UniqueRule,
)
from src.tenancy.schemas.results import DuplicateFinding, IntegrityReport, OrphanFinding

logger = structlog.get_logger(__name__)


class IntegrityValidator:
    def __init__(
        self,
        catalog: SchemaCatalog,
        foreign_keys: Sequence[ForeignKeyRule] = FOREIGN_KEYS,
        unique_groups: Sequence[UniqueRule] = UNIQUE_GROUPS,
        consistency_rules: Sequence[ConsistencyRule] = CONSISTENCY_RULES,
        range_rules: Sequence[RangeRule] = RANGE_RULES,
        computed_rules: Sequence[ComputedFieldRule] = COMPUTED_FIELD_RULES,
        future_date_rules: Sequence[FutureDateRule] = FUTURE_DATE_RULES,
        example_limit: int = 5,
    ) -> None:
        self._catalog = catalog
        self._foreign_keys = foreign_keys
        self._unique_groups = unique_groups
        self._consistency_rules = consistency_rules
        self._range_rules = range_rules
        self._computed_rules = computed_rules
        self._future_date_rules = future_date_rules
        self._example_limit = example_limit

    async def validate(self, schema_name: str) -> IntegrityReport:
        report = IntegrityReport(schema_name=schema_name)
        tables = set(await self._catalog.list_tables(schema_name))

        def present(key: str, *needed: str) -> bool:
            if all(table in tables for table in needed):
                return True
            report.skipped.append(key)
            return False

        # Orphaned foreign keys
        for rule in self._foreign_keys:
            key = f"orphans:{rule.description}"
            if not present(key, rule.table, rule.reference_table):
                continue
            count = await self._catalog.count_orphans(schema_name, rule)
            report.checks[key] = count
            if count > 0:
                report.errors.append(f"Found {count} orphaned records in {rule.table}.{rule.column}")
                report.orphaned_records.append(
                    OrphanFinding(
                        table=rule.table,
                        column=rule.column,
                        reference_table=rule.reference_table,
                        reference_column=rule.reference_column,
                        count=count,
                    )
                )

        # Duplicate uniqueness groups
        for rule in self._unique_groups:
            key = f"duplicates:{rule.table}({', '.join(rule.columns)})"
            if not present(key, rule.table):
                continue
            groups, examples = await self._catalog.find_duplicates(schema_name, rule, self._example_limit)
            report.checks[key] = groups
            if groups > 0:
                report.errors.append(f"Duplicate {rule.description} found in {rule.table}")
                report.duplicates.append(
                    DuplicateFinding(
                        table=rule.table,
                        columns=list(rule.columns),
                        description=rule.description,
                        count=groups,
                        examples=examples[: self._example_limit],
                    )
                )

        # Cross-table consistency
        for rule in self._consistency_rules:
            key = f"consistency:{rule.table}->{rule.reference_table}"
            if not present(key, rule.table, rule.reference_table):
                continue
            count = await self._catalog.count_inconsistent(schema_name, rule)
            report.checks[key] = count
            if count > 0:
                report.errors.append(f"Found {count} {rule.description}")

        for rule in self._range_rules:
            key = f"range:{rule.table}.{rule.column}"
            if not present(key, rule.table):
                continue
            count = await self._catalog.count_out_of_range(schema_name, rule)
            report.checks[key] = count
            if count > 0:
                report.errors.append(
                    f"Found {count} {rule.table} with invalid {rule.column} "
                    f"(outside {rule.minimum:g}..{rule.maximum:g})"
                )

        # Warnings only from here on
        for rule in self._computed_rules:
            key = f"computed:{rule.table}.{rule.target}"
            if not present(key, rule.table):
                continue
            count = await self._catalog.count_computed_mismatches(schema_name, rule)
            report.checks[key] = count
            if count > 0:
                report.warnings.append(f"Found {count} {rule.table} with incorrect {rule.target} calculations")

        for rule in self._future_date_rules:
            key = f"future:{rule.table}.{rule.column}"
            if not present(key, rule.table):
                continue
            count = await self._catalog.count_future_dated(schema_name, rule)
            report.checks[key] = count
            if count > 0:
                report.warnings.append(f"Found {count} {rule.table} with future {rule.column}")

        report.valid = not report.errors
        logger.debug(
            "integrity_validation_complete",
            schema_name=schema_name,
            errors=len(report.errors),
            skipped=len(report.skipped),
        )
        return report
