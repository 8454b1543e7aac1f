"""Post-migration tenant validation.

Validators for one tenant schema, each returning a report instead of raising:
- StructuralValidator: tables, columns, types and indexes vs the expected catalog
- DataMigrationChecker: row counts vs the legacy shared tables
- IntegrityValidator: orphans, duplicates, consistency, ranges, computed fields
- RelationshipChecker: informational parent/child population counts
- IsolationValidator: routing and search_path containment
- PerformanceProbe: size statistics and a timed sample query

MigrationValidationService runs them in that order and merges the findings;
render_validation_report turns results into Markdown.
"""

from src.tenancy.validation.aggregator import MigrationValidationService, error_result
from src.tenancy.validation.data_migration import DataMigrationChecker
from src.tenancy.validation.integrity import IntegrityValidator
from src.tenancy.validation.isolation import IsolationValidator
from src.tenancy.validation.performance import PerformanceProbe, collect_schema_statistics, format_bytes
from src.tenancy.validation.relationships import RelationshipChecker
from src.tenancy.validation.report import render_validation_report
from src.tenancy.validation.structural import StructuralValidator

__all__ = [
    "MigrationValidationService",
    "StructuralValidator",
    "DataMigrationChecker",
    "IntegrityValidator",
    "RelationshipChecker",
    "IsolationValidator",
    "PerformanceProbe",
    "collect_schema_statistics",
    "format_bytes",
    "error_result",
    "render_validation_report",
]
