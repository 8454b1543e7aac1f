"""Schema catalog abstract base class -- the single gateway to the relational engine.

Every engine-facing action of the provisioner, context switcher, migration
runner and validators goes through this interface: DDL, catalog
introspection, routing (search_path) control, integrity probes and
statistics. PostgresCatalog is the production implementation.

A catalog instance is bound to one connection, so the routing state it
changes (search_path) belongs to that connection only.

Methods taking ``schema_name`` address tables fully qualified; only
``sample_rows`` resolves its table through the active search_path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Table

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


@dataclass(frozen=True)
class ColumnInfo:
    data_type: str
    nullable: bool
    default: str | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class TableStatRow:
    name: str
    size_bytes: int
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    live_tuples: int = 0


class SchemaCatalog(ABC):
    """Abstract interface for schema-level engine operations."""

    # ── Namespaces ──────────────────────────────────────────────────────

    @abstractmethod
    async def schema_exists(self, schema_name: str) -> bool:
        ...

    @abstractmethod
    async def list_schemas(self, prefix: str) -> list[str]:
        """Schema names starting with ``prefix``, sorted."""
        ...

    @abstractmethod
    async def create_schema(self, schema_name: str) -> None:
        ...

    @abstractmethod
    async def drop_schema(self, schema_name: str, cascade: bool = True) -> None:
        """Drop a schema if it exists."""
        ...

    @abstractmethod
    async def terminate_sessions(self, schema_name: str) -> int:
        """Terminate other sessions referencing the schema. Returns how many."""
        ...

    # ── Introspection ───────────────────────────────────────────────────

    @abstractmethod
    async def list_tables(self, schema_name: str) -> list[str]:
        ...

    @abstractmethod
    async def get_columns(self, schema_name: str, table_name: str) -> dict[str, ColumnInfo]:
        """Columns of a table keyed by name, in ordinal order."""
        ...

    @abstractmethod
    async def list_indexes(self, schema_name: str) -> list[str]:
        ...

    @abstractmethod
    async def table_statistics(self, schema_name: str) -> list[TableStatRow]:
        ...

    # ── DDL ─────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_table(self, schema_name: str, table: Table) -> None:
        """Create a TenantBase table inside the schema if it is not there yet."""
        ...

    @abstractmethod
    async def create_index(self, schema_name: str, index: IndexSpec) -> None:
        """Create an index if it is not there yet."""
        ...

    @abstractmethod
    async def enable_isolation_policy(self, schema_name: str, table_name: str) -> None:
        ...

    @abstractmethod
    async def forced_rls_tables(self, schema_name: str) -> list[str]:
        """Tables in the schema with FORCE ROW LEVEL SECURITY enabled."""
        ...

    @abstractmethod
    async def set_force_rls(self, schema_name: str, table_name: str, enabled: bool) -> None:
        ...

    @abstractmethod
    async def clone_table(self, source_schema: str, target_schema: str, table_name: str) -> None:
        """Create an empty copy of a table including defaults, constraints and indexes."""
        ...

    # ── Rows ────────────────────────────────────────────────────────────

    @abstractmethod
    async def insert_rows(self, schema_name: str, table_name: str, rows: list[dict[str, Any]]) -> None:
        ...

    @abstractmethod
    async def count_rows(self, schema_name: str, table_name: str) -> int:
        ...

    @abstractmethod
    async def count_legacy_rows(
        self, legacy_schema: str, table_name: str, tenant_column: str, tenant_key: str
    ) -> int:
        """Rows of a shared legacy table belonging to one tenant."""
        ...

    @abstractmethod
    async def sample_rows(self, table_name: str, limit: int) -> list[dict[str, Any]]:
        """Read up to ``limit`` rows from an unqualified table (resolved via search_path)."""
        ...

    # ── Routing ─────────────────────────────────────────────────────────

    @abstractmethod
    async def set_search_path(self, schemas: list[str]) -> None:
        ...

    @abstractmethod
    async def get_search_path(self) -> list[str]:
        ...

    # ── Integrity Probes ────────────────────────────────────────────────

    @abstractmethod
    async def count_orphans(self, schema_name: str, rule: ForeignKeyRule) -> int:
        ...

    @abstractmethod
    async def find_duplicates(
        self, schema_name: str, rule: UniqueRule, limit: int
    ) -> tuple[int, list[dict[str, Any]]]:
        """Return (number of duplicate groups, up to ``limit`` example groups)."""
        ...

    @abstractmethod
    async def count_inconsistent(self, schema_name: str, rule: ConsistencyRule) -> int:
        ...

    @abstractmethod
    async def count_out_of_range(self, schema_name: str, rule: RangeRule) -> int:
        ...

    @abstractmethod
    async def count_computed_mismatches(self, schema_name: str, rule: ComputedFieldRule) -> int:
        ...

    @abstractmethod
    async def count_future_dated(self, schema_name: str, rule: FutureDateRule) -> int:
        ...

    @abstractmethod
    async def count_childless_parents(self, schema_name: str, rule: PopulationRule) -> int:
        ...

    # ── Migration Ledger ────────────────────────────────────────────────

    @abstractmethod
    async def ensure_migration_ledger(self, schema_name: str) -> None:
        ...

    @abstractmethod
    async def get_applied_versions(self, schema_name: str) -> list[int]:
        ...

    @abstractmethod
    async def record_migration(self, schema_name: str, version: int, name: str) -> None:
        ...
