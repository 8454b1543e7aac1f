"""Markdown rendering of validation results for human review."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from src.tenancy.schemas.results import ValidationResult, ValidationStatus


def _signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def render_validation_report(results: Sequence[ValidationResult], generated_at: datetime | None = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    statuses = [result.overall_status for result in results]

    lines = [
        "# Tenant Migration Validation Report",
        "",
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        "",
        "## Summary",
        f"- Total Tenants: {len(results)}",
        f"- Passed: {statuses.count(ValidationStatus.passed)}",
        f"- Failed: {statuses.count(ValidationStatus.failed)}",
        f"- Errored: {statuses.count(ValidationStatus.error)}",
        "",
    ]

    for result in results:
        lines += [
            f"## Tenant: {result.tenant_name} (ID: {result.tenant_id})",
            f"**Status:** {result.overall_status.value}",
            f"**Schema:** {result.schema_name or '-'}",
            "",
        ]
        if result.errors:
            lines += ["### Errors", *(f"- {error}" for error in result.errors), ""]
        if result.warnings:
            lines += ["### Warnings", *(f"- {warning}" for warning in result.warnings), ""]

        if result.data_migration and result.data_migration.record_counts:
            lines += ["### Record Counts", "", "| Table | Old | New | Delta |", "|---|---:|---:|---:|"]
            for table, counts in result.data_migration.record_counts.items():
                lines.append(
                    f"| {table} | {counts.old_count} | {counts.new_count} | {_signed(counts.difference)} |"
                )
            lines.append("")

    return "\n".join(lines) + "\n"
