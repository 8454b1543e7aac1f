"""Relationship population counts (informational, never a failure)."""

from __future__ import annotations

from collections.abc import Sequence

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.schemas.expected import POPULATION_RULES, PopulationRule
from src.tenancy.schemas.results import RelationshipReport


class RelationshipChecker:
    def __init__(self, catalog: SchemaCatalog, rules: Sequence[PopulationRule] = POPULATION_RULES) -> None:
        self._catalog = catalog
        self._rules = rules

    async def check(self, schema_name: str) -> RelationshipReport:
        report = RelationshipReport()
        tables = set(await self._catalog.list_tables(schema_name))
        for rule in self._rules:
            if rule.parent_table not in tables or rule.child_table not in tables:
                report.skipped.append(rule.name)
                continue
            report.relationship_counts[rule.name] = await self._catalog.count_childless_parents(schema_name, rule)
        return report
