"""Test fixtures for tenant schema lifecycle tests.

Provides:
- InMemoryCatalog: SchemaCatalog fake with schemas, tables, rows, indexes,
  a search_path and a migration ledger, plus failure injection
- Fake tenant repository, backup service and audit logger
- Settings isolated from the environment and .env files
- School seed data (students, courses, enrollments) and legacy copies

Every fake coroutine yields to the event loop once, so concurrently started
operations interleave the way they would against a real database.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import pytest
from sqlalchemy import Table

from src.tenancy.catalog.adapter import ColumnInfo, SchemaCatalog, TableStatRow
from src.tenancy.config import Settings
from src.tenancy.core.errors import TenantNotFound
from src.tenancy.core.locks import InMemoryOperationLocks
from src.tenancy.models.tenant import MIGRATION_LEDGER_TABLE
from src.tenancy.schemas.expected import (
    ComputedFieldRule,
    ConsistencyRule,
    ForeignKeyRule,
    FutureDateRule,
    IndexSpec,
    PopulationRule,
    RangeRule,
    UniqueRule,
)
from src.tenancy.schemas.results import Snapshot
from src.tenancy.schemas.tenant import TenantRecord
from src.tenancy.services.audit import AuditEvent, AuditLogger
from src.tenancy.services.backup import BackupService

# ── In-memory catalog ───────────────────────────────────────────────────────

_SA_TYPE_NAMES = {
    "BigInteger": "bigint",
    "Integer": "integer",
    "String": "character varying",
    "Text": "text",
    "Date": "date",
    "Numeric": "numeric",
    "JSON": "json",
    "Boolean": "boolean",
}


def information_schema_type(sa_type: Any) -> str:
    name = type(sa_type).__name__
    if name == "DateTime":
        return "timestamp with time zone" if sa_type.timezone else "timestamp without time zone"
    return _SA_TYPE_NAMES.get(name, name.lower())


@dataclass
class FakeTable:
    columns: dict[str, ColumnInfo]
    rows: list[dict[str, Any]] = field(default_factory=list)


class InMemoryCatalog(SchemaCatalog):
    """Dict-backed SchemaCatalog. Foreign keys are not enforced."""

    def __init__(self, default_schema: str = "public") -> None:
        self.schemas: dict[str, dict[str, FakeTable]] = {default_schema: {}}
        self.indexes: dict[str, set[str]] = {default_schema: set()}
        self.search_path: list[str] = [default_schema]
        self.forced_rls: set[tuple[str, str]] = set()
        self.policies: set[tuple[str, str]] = set()
        self.active_sessions: dict[str, int] = {}
        self.table_sizes: dict[tuple[str, str], int] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: list[tuple[str, str | None, Exception]] = []

    # ── Test helpers ────────────────────────────────────────────────────

    def fail(self, method: str, exc: Exception, match: str | None = None) -> None:
        """Make ``method`` raise ``exc`` (only when an argument equals ``match``, if given)."""
        self._failures.append((method, match, exc))

    def add_table(self, schema_name: str, table_name: str, rows: list[dict[str, Any]]) -> None:
        """Create a loosely typed table from row dicts (legacy tables, odd shapes)."""
        self.schemas.setdefault(schema_name, {})
        self.indexes.setdefault(schema_name, set())
        columns = {key: ColumnInfo("text", True) for row in rows for key in row}
        self.schemas[schema_name][table_name] = FakeTable(columns, [dict(row) for row in rows])

    def rows(self, schema_name: str, table_name: str) -> list[dict[str, Any]]:
        return self.schemas[schema_name][table_name].rows

    async def _tick(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        await asyncio.sleep(0)
        for name, match, exc in self._failures:
            if name == method and (match is None or match in [str(arg) for arg in args]):
                raise exc

    def _table(self, schema_name: str, table_name: str) -> FakeTable:
        try:
            return self.schemas[schema_name][table_name]
        except KeyError:
            raise RuntimeError(f'relation "{schema_name}.{table_name}" does not exist')

    def _current_schema(self) -> str | None:
        return next((name for name in self.search_path if name in self.schemas), None)

    def _policy_blocks(self, schema_name: str, table_name: str) -> bool:
        # Forced policy admits rows only while current_schema() is the tenant schema.
        key = (schema_name, table_name)
        return key in self.forced_rls and key in self.policies and self._current_schema() != schema_name

    def _visible(self, schema_name: str, table_name: str) -> list[dict[str, Any]]:
        table = self._table(schema_name, table_name)
        if self._policy_blocks(schema_name, table_name):
            return []
        return table.rows

    # ── Namespaces ──────────────────────────────────────────────────────

    async def schema_exists(self, schema_name: str) -> bool:
        await self._tick("schema_exists", schema_name)
        return schema_name in self.schemas

    async def list_schemas(self, prefix: str) -> list[str]:
        await self._tick("list_schemas", prefix)
        return sorted(name for name in self.schemas if name.startswith(prefix))

    async def create_schema(self, schema_name: str) -> None:
        await self._tick("create_schema", schema_name)
        if schema_name in self.schemas:
            raise RuntimeError(f'schema "{schema_name}" already exists')
        self.schemas[schema_name] = {}
        self.indexes[schema_name] = set()

    async def drop_schema(self, schema_name: str, cascade: bool = True) -> None:
        await self._tick("drop_schema", schema_name)
        self.schemas.pop(schema_name, None)
        self.indexes.pop(schema_name, None)
        self.forced_rls = {entry for entry in self.forced_rls if entry[0] != schema_name}
        self.policies = {entry for entry in self.policies if entry[0] != schema_name}

    async def terminate_sessions(self, schema_name: str) -> int:
        await self._tick("terminate_sessions", schema_name)
        return self.active_sessions.pop(schema_name, 0)

    # ── Introspection ───────────────────────────────────────────────────

    async def list_tables(self, schema_name: str) -> list[str]:
        await self._tick("list_tables", schema_name)
        return sorted(self.schemas.get(schema_name, {}))

    async def get_columns(self, schema_name: str, table_name: str) -> dict[str, ColumnInfo]:
        await self._tick("get_columns", schema_name, table_name)
        return dict(self._table(schema_name, table_name).columns)

    async def list_indexes(self, schema_name: str) -> list[str]:
        await self._tick("list_indexes", schema_name)
        return sorted(self.indexes.get(schema_name, set()))

    async def table_statistics(self, schema_name: str) -> list[TableStatRow]:
        await self._tick("table_statistics", schema_name)
        return [
            TableStatRow(
                name=name,
                size_bytes=self.table_sizes.get((schema_name, name), 8192),
                inserts=len(table.rows),
                live_tuples=len(table.rows),
            )
            for name, table in sorted(self.schemas.get(schema_name, {}).items())
        ]

    # ── DDL ─────────────────────────────────────────────────────────────

    async def create_table(self, schema_name: str, table: Table) -> None:
        await self._tick("create_table", schema_name, table.name)
        tables = self.schemas[schema_name]
        if table.name in tables:
            return
        tables[table.name] = FakeTable(
            {
                column.name: ColumnInfo(information_schema_type(column.type), bool(column.nullable))
                for column in table.columns
            }
        )

    async def create_index(self, schema_name: str, index: IndexSpec) -> None:
        await self._tick("create_index", schema_name, index.name)
        self._table(schema_name, index.table)
        self.indexes[schema_name].add(index.name)

    async def enable_isolation_policy(self, schema_name: str, table_name: str) -> None:
        await self._tick("enable_isolation_policy", schema_name, table_name)
        self._table(schema_name, table_name)
        self.policies.add((schema_name, table_name))
        self.forced_rls.add((schema_name, table_name))

    async def forced_rls_tables(self, schema_name: str) -> list[str]:
        await self._tick("forced_rls_tables", schema_name)
        return sorted(table for schema, table in self.forced_rls if schema == schema_name)

    async def set_force_rls(self, schema_name: str, table_name: str, enabled: bool) -> None:
        await self._tick("set_force_rls", schema_name, table_name)
        if enabled:
            self.forced_rls.add((schema_name, table_name))
        else:
            self.forced_rls.discard((schema_name, table_name))

    async def clone_table(self, source_schema: str, target_schema: str, table_name: str) -> None:
        await self._tick("clone_table", source_schema, target_schema, table_name)
        source = self._table(source_schema, table_name)
        self.schemas[target_schema][table_name] = FakeTable(dict(source.columns))

    # ── Rows ────────────────────────────────────────────────────────────

    async def insert_rows(self, schema_name: str, table_name: str, rows: list[dict[str, Any]]) -> None:
        await self._tick("insert_rows", schema_name, table_name)
        table = self._table(schema_name, table_name)
        if self._policy_blocks(schema_name, table_name):
            raise RuntimeError(f'new row violates row-level security policy for table "{table_name}"')
        for row in rows:
            unknown = set(row) - set(table.columns)
            if unknown:
                raise RuntimeError(f"column {sorted(unknown)[0]} of relation {table_name} does not exist")
            table.rows.append({name: row.get(name) for name in table.columns})

    async def count_rows(self, schema_name: str, table_name: str) -> int:
        await self._tick("count_rows", schema_name, table_name)
        return len(self._visible(schema_name, table_name))

    async def count_legacy_rows(
        self, legacy_schema: str, table_name: str, tenant_column: str, tenant_key: str
    ) -> int:
        await self._tick("count_legacy_rows", legacy_schema, table_name)
        table = self._table(legacy_schema, table_name)
        return sum(1 for row in table.rows if str(row.get(tenant_column)) == str(tenant_key))

    async def sample_rows(self, table_name: str, limit: int) -> list[dict[str, Any]]:
        await self._tick("sample_rows", table_name)
        for schema_name in self.search_path:
            table = self.schemas.get(schema_name, {}).get(table_name)
            if table is not None:
                return [dict(row) for row in self._visible(schema_name, table_name)[:limit]]
        raise RuntimeError(f'relation "{table_name}" does not exist')

    # ── Routing ─────────────────────────────────────────────────────────

    async def set_search_path(self, schemas: list[str]) -> None:
        await self._tick("set_search_path", *schemas)
        self.search_path = list(schemas)

    async def get_search_path(self) -> list[str]:
        await self._tick("get_search_path")
        return list(self.search_path)

    # ── Integrity checks ────────────────────────────────────────────────

    async def count_orphans(self, schema_name: str, rule: ForeignKeyRule) -> int:
        await self._tick("count_orphans", schema_name, rule.table)
        parents = {row[rule.reference_column] for row in self._visible(schema_name, rule.reference_table)}
        return sum(
            1
            for row in self._visible(schema_name, rule.table)
            if row.get(rule.column) is not None and row[rule.column] not in parents
        )

    async def find_duplicates(
        self, schema_name: str, rule: UniqueRule, limit: int
    ) -> tuple[int, list[dict[str, Any]]]:
        await self._tick("find_duplicates", schema_name, rule.table)
        groups: dict[tuple[Any, ...], int] = {}
        for row in self._visible(schema_name, rule.table):
            key = tuple(row.get(column) for column in rule.columns)
            groups[key] = groups.get(key, 0) + 1
        duplicated = [(key, count) for key, count in groups.items() if count > 1]
        duplicated.sort(key=lambda item: -item[1])
        examples = [
            {**dict(zip(rule.columns, key)), "duplicate_count": count} for key, count in duplicated[:limit]
        ]
        return len(duplicated), examples

    async def count_inconsistent(self, schema_name: str, rule: ConsistencyRule) -> int:
        await self._tick("count_inconsistent", schema_name, rule.table)
        (link_column, link_reference), *compared = rule.column_pairs
        parents = {row[link_reference]: row for row in self._visible(schema_name, rule.reference_table)}
        count = 0
        for row in self._visible(schema_name, rule.table):
            parent = parents.get(row.get(link_column))
            if parent is None:
                continue
            if any(row.get(column) != parent.get(reference) for column, reference in compared):
                count += 1
        return count

    async def count_out_of_range(self, schema_name: str, rule: RangeRule) -> int:
        await self._tick("count_out_of_range", schema_name, rule.table)
        values = [row.get(rule.column) for row in self._visible(schema_name, rule.table)]
        return sum(1 for value in values if value is not None and not rule.minimum <= float(value) <= rule.maximum)

    async def count_computed_mismatches(self, schema_name: str, rule: ComputedFieldRule) -> int:
        await self._tick("count_computed_mismatches", schema_name, rule.table)
        count = 0
        for row in self._visible(schema_name, rule.table):
            numerator, denominator, target = row.get(rule.numerator), row.get(rule.denominator), row.get(rule.target)
            if numerator is None or target is None or denominator is None or float(denominator) <= 0:
                continue
            if abs(float(target) - float(numerator) / float(denominator) * rule.scale) > rule.tolerance:
                count += 1
        return count

    async def count_future_dated(self, schema_name: str, rule: FutureDateRule) -> int:
        await self._tick("count_future_dated", schema_name, rule.table)
        now = datetime.now(timezone.utc)
        return sum(
            1
            for row in self._visible(schema_name, rule.table)
            if row.get(rule.column) is not None and row[rule.column] > now
        )

    async def count_childless_parents(self, schema_name: str, rule: PopulationRule) -> int:
        await self._tick("count_childless_parents", schema_name, rule.parent_table)
        referenced = {row.get(rule.child_column) for row in self._visible(schema_name, rule.child_table)}
        return sum(
            1
            for row in self._visible(schema_name, rule.parent_table)
            if row.get(rule.parent_column) not in referenced
        )

    # ── Migration ledger ────────────────────────────────────────────────

    async def ensure_migration_ledger(self, schema_name: str) -> None:
        await self.create_table(schema_name, MIGRATION_LEDGER_TABLE)

    async def get_applied_versions(self, schema_name: str) -> list[int]:
        await self._tick("get_applied_versions", schema_name)
        ledger = self._table(schema_name, MIGRATION_LEDGER_TABLE.name)
        return sorted(row["version"] for row in ledger.rows)

    async def record_migration(self, schema_name: str, version: int, name: str) -> None:
        await self._tick("record_migration", schema_name, version)
        ledger = self._table(schema_name, MIGRATION_LEDGER_TABLE.name)
        if all(row["version"] != version for row in ledger.rows):
            ledger.rows.append({"version": version, "name": name, "applied_at": datetime.now(timezone.utc)})


def catalog_factory_for(catalog: SchemaCatalog):
    """Catalog factory that always hands out the same catalog."""

    @asynccontextmanager
    async def factory() -> AsyncGenerator[SchemaCatalog, None]:
        yield catalog

    return factory


# ── Collaborator fakes ──────────────────────────────────────────────────────


class FakeTenantRepository:
    """TenantRepository stand-in backed by a dict of TenantRecords."""

    def __init__(self, tenants: list[TenantRecord] | None = None) -> None:
        self.tenants: dict[str, TenantRecord] = {tenant.id: tenant for tenant in tenants or []}

    async def get(self, tenant_id: str) -> TenantRecord:
        await asyncio.sleep(0)
        try:
            return self.tenants[tenant_id].model_copy()
        except KeyError:
            raise TenantNotFound(tenant_id)

    async def list_active(self) -> list[TenantRecord]:
        await asyncio.sleep(0)
        return [tenant.model_copy() for tenant in self.tenants.values() if tenant.is_active]

    async def set_schema(self, tenant_id: str, schema_name: str, schema_version: int | None) -> None:
        tenant = self.tenants[tenant_id]
        tenant.schema_name = schema_name
        tenant.schema_version = schema_version
        tenant.schema_created_at = datetime.now(timezone.utc)

    async def clear_schema(self, tenant_id: str) -> None:
        tenant = self.tenants[tenant_id]
        tenant.schema_name = None
        tenant.schema_version = None
        tenant.schema_created_at = None

    async def set_schema_version(self, tenant_id: str, schema_version: int | None) -> None:
        self.tenants[tenant_id].schema_version = schema_version


class FakeBackupService(BackupService):
    """Snapshots are deep copies of the catalog's tables for the schema."""

    def __init__(self, catalog: InMemoryCatalog) -> None:
        self._catalog = catalog
        self.snapshots: dict[str, tuple[dict[str, FakeTable], set[str]]] = {}
        self.restored: list[str] = []

    async def create_snapshot(self, tenant_id: str, schema_name: str) -> Snapshot:
        await asyncio.sleep(0)
        snapshot_id = f"{schema_name}_{len(self.snapshots) + 1}"
        self.snapshots[snapshot_id] = (
            copy.deepcopy(self._catalog.schemas[schema_name]),
            set(self._catalog.indexes[schema_name]),
        )
        return Snapshot(
            snapshot_id=snapshot_id,
            tenant_id=tenant_id,
            schema_name=schema_name,
            location=f"memory://{snapshot_id}",
        )

    async def restore_snapshot(self, snapshot: Snapshot) -> None:
        await asyncio.sleep(0)
        tables, indexes = self.snapshots[snapshot.snapshot_id]
        self._catalog.schemas[snapshot.schema_name] = copy.deepcopy(tables)
        self._catalog.indexes[snapshot.schema_name] = set(indexes)
        self.restored.append(snapshot.snapshot_id)


class RecordingAuditLogger(AuditLogger):
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)


# ── Seed data ───────────────────────────────────────────────────────────────

TENANT_ID = str(uuid.UUID("00000000-0000-0000-0000-0000000000a1"))


def school_data(students: int = 10, enrollments: int = 12, courses: int = 3) -> dict[str, list[dict[str, Any]]]:
    """Consistent seed rows: every enrollment points at a real student and course."""
    return {
        "students": [
            {
                "id": i,
                "student_id": f"S{i:04d}",
                "first_name": f"First{i}",
                "last_name": f"Last{i}",
                "email": f"student{i}@acme.edu",
                "status": "active",
            }
            for i in range(1, students + 1)
        ],
        "courses": [
            {"id": i, "course_code": f"CS{100 + i}", "title": f"Course {i}", "credits": 3, "status": "active"}
            for i in range(1, courses + 1)
        ],
        "enrollments": [
            {
                "id": k + 1,
                "student_id": k % students + 1,
                "course_id": k // students % courses + 1,
                "status": "enrolled",
                "semester": "fall",
                "academic_year": "2025-2026",
            }
            for k in range(enrollments)
        ],
    }


def legacy_copy(data: dict[str, list[dict[str, Any]]], tenant_id: str) -> dict[str, list[dict[str, Any]]]:
    """The same rows as they sat in the shared tables, tagged with tenant_id."""
    return {table: [{**row, "tenant_id": tenant_id} for row in rows] for table, rows in data.items()}


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DEFAULT_SCHEMA="public",
        LEGACY_SCHEMA="public",
        TENANT_SCHEMA_PREFIX="tenant_",
        OPERATION_LOCK_BACKEND="memory",
        DUPLICATE_EXAMPLE_LIMIT=5,
    )


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture
def tenant() -> TenantRecord:
    return TenantRecord(id=TENANT_ID, slug="acme123", name="Acme University")


@pytest.fixture
def repository(tenant) -> FakeTenantRepository:
    return FakeTenantRepository([tenant])


@pytest.fixture
def backup(catalog) -> FakeBackupService:
    return FakeBackupService(catalog)


@pytest.fixture
def audit() -> RecordingAuditLogger:
    return RecordingAuditLogger()


@pytest.fixture
def service(catalog, repository, backup, audit, settings):
    from src.tenancy.services.schema_manager import TenantSchemaService

    return TenantSchemaService(
        repository,
        catalog_factory=catalog_factory_for(catalog),
        locks=InMemoryOperationLocks(),
        backup=backup,
        audit=audit,
        settings=settings,
    )
