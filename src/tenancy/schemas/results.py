"""Result models returned by the schema lifecycle and validation services.

All results are transient: returned to the caller and logged, never persisted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field

from src.tenancy.core.errors import IntegrityViolation, IsolationFailure, StructuralMismatch


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationStatus(str, Enum):
    pending = "pending"
    passed = "passed"
    failed = "failed"
    error = "error"


# ── Backups ─────────────────────────────────────────────────────────────────


class Snapshot(BaseModel):
    """Opaque handle to a schema backup produced by a BackupService."""

    snapshot_id: str
    tenant_id: str
    schema_name: str
    location: str
    size_bytes: int | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# ── Structural Operations ───────────────────────────────────────────────────


class CreateSchemaResult(BaseModel):
    schema_name: str
    created: bool = False
    tables_created: list[str] = Field(default_factory=list)
    indexes_created: list[str] = Field(default_factory=list)
    policies_created: list[str] = Field(default_factory=list)
    rows_seeded: int = 0
    schema_version: int | None = None
    errors: list[str] = Field(default_factory=list)


class DropSchemaResult(BaseModel):
    schema_name: str
    dropped: bool = False
    snapshot: Snapshot | None = None
    terminated_sessions: int = 0


class MigrationResult(BaseModel):
    schema_name: str
    applied: list[int] = Field(default_factory=list)
    already_applied: list[int] = Field(default_factory=list)
    current_version: int | None = None
    snapshot: Snapshot | None = None


class CloneResult(BaseModel):
    source_schema: str
    target_schema: str
    success: bool = False
    tables_cloned: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class RestoreResult(BaseModel):
    schema_name: str
    snapshot: Snapshot
    current_version: int | None = None


# ── Statistics ──────────────────────────────────────────────────────────────


class TableStatistics(BaseModel):
    name: str
    size_bytes: int
    size_human: str
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    live_tuples: int = 0


class SchemaStatistics(BaseModel):
    schema_name: str
    table_count: int = 0
    total_size_bytes: int = 0
    total_size_human: str = "0 B"
    tables: list[TableStatistics] = Field(default_factory=list)


# ── Validation Reports ──────────────────────────────────────────────────────


class StructuralReport(BaseModel):
    schema_name: str
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    checks: dict[str, str] = Field(default_factory=dict)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise StructuralMismatch(self.schema_name, self.errors)


class OrphanFinding(BaseModel):
    table: str
    column: str
    reference_table: str
    reference_column: str
    count: int


class DuplicateFinding(BaseModel):
    table: str
    columns: list[str]
    description: str
    count: int
    examples: list[dict[str, Any]] = Field(default_factory=list)


class IntegrityReport(BaseModel):
    schema_name: str
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    orphaned_records: list[OrphanFinding] = Field(default_factory=list)
    duplicates: list[DuplicateFinding] = Field(default_factory=list)
    checks: dict[str, int] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise IntegrityViolation(self.schema_name, self.errors)


class RecordCount(BaseModel):
    old_count: int
    new_count: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def difference(self) -> int:
        return self.new_count - self.old_count


class DataMigrationReport(BaseModel):
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    record_counts: dict[str, RecordCount] = Field(default_factory=dict)


class RelationshipReport(BaseModel):
    relationship_counts: dict[str, int] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)


class IsolationReport(BaseModel):
    schema_name: str
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    can_query_schema: bool | None = None
    search_path: list[str] = Field(default_factory=list)
    active_schema: str | None = None

    def raise_for_errors(self) -> None:
        if self.errors:
            raise IsolationFailure(self.schema_name, self.errors)


class PerformanceReport(BaseModel):
    warnings: list[str] = Field(default_factory=list)
    schema_stats: SchemaStatistics | None = None
    sample_query_time_ms: float | None = None


class ValidationResult(BaseModel):
    """Combined outcome of every validator for one tenant."""

    tenant_id: str
    tenant_name: str
    schema_name: str | None
    overall_status: ValidationStatus = ValidationStatus.pending
    schema_structure: StructuralReport | None = None
    data_migration: DataMigrationReport | None = None
    data_integrity: IntegrityReport | None = None
    relationships: RelationshipReport | None = None
    tenant_isolation: IsolationReport | None = None
    performance: PerformanceReport | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    validated_at: datetime = Field(default_factory=_utcnow)

    @property
    def passed(self) -> bool:
        return self.overall_status == ValidationStatus.passed
