"""PostgreSQL implementation of SchemaCatalog.

Runs on a single AsyncConnection in AUTOCOMMIT mode: every DDL statement is
visible to other sessions immediately, which is what pg_terminate_backend,
rollback-by-drop and concurrent validators expect. Identifiers are validated
and quoted through ``src.tenancy.core.identifiers``; values are always bound
parameters.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import Table, insert, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.schema import CreateTable
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.tenancy.catalog.adapter import ColumnInfo, SchemaCatalog, TableStatRow
from src.tenancy.core.database import TenantBase, get_engine
from src.tenancy.core.identifiers import qualified, quote_ident, validate_identifier
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

logger = structlog.get_logger(__name__)

# Placeholder schema used by TenantBase models
TENANT_PLACEHOLDER = "tenant"


def parse_search_path(value: str) -> list[str]:
    """Split a SHOW search_path value into schema names.

    >>> parse_search_path('"$user", public')
    ['$user', 'public']
    """
    return [part.strip().strip('"') for part in value.split(",") if part.strip()]


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


class PostgresCatalog(SchemaCatalog):
    """SchemaCatalog over an asyncpg-backed SQLAlchemy connection."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def _scalar(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        result = await self._conn.execute(text(sql), params or {})
        return result.scalar()

    async def _count(self, sql: str, params: dict[str, Any] | None = None) -> int:
        return int(await self._scalar(sql, params) or 0)

    def _translate(self, schema_name: str) -> dict[str, Any]:
        return {"schema_translate_map": {TENANT_PLACEHOLDER: validate_identifier(schema_name)}}

    # ── Namespaces ──────────────────────────────────────────────────────

    async def schema_exists(self, schema_name: str) -> bool:
        found = await self._scalar(
            "SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema",
            {"schema": schema_name},
        )
        return found is not None

    async def list_schemas(self, prefix: str) -> list[str]:
        result = await self._conn.execute(
            text(
                "SELECT schema_name FROM information_schema.schemata "
                "WHERE schema_name LIKE :pattern ESCAPE '\\' ORDER BY schema_name"
            ),
            {"pattern": _like_prefix(prefix)},
        )
        return [row.schema_name for row in result]

    async def create_schema(self, schema_name: str) -> None:
        await self._conn.execute(text(f"CREATE SCHEMA {quote_ident(schema_name)}"))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(DBAPIError),
        reraise=True,
    )
    async def drop_schema(self, schema_name: str, cascade: bool = True) -> None:
        mode = "CASCADE" if cascade else "RESTRICT"
        await self._conn.execute(text(f"DROP SCHEMA IF EXISTS {quote_ident(schema_name)} {mode}"))

    async def terminate_sessions(self, schema_name: str) -> int:
        """End other backends working in ``schema_name``.

        A backend matches when its last statement names the schema as a whole
        word or when it holds a lock on a relation inside the schema.
        """
        validate_identifier(schema_name)
        return await self._count(
            r"""
            SELECT count(pg_terminate_backend(a.pid))
            FROM pg_stat_activity a
            WHERE a.datname = current_database()
              AND a.pid <> pg_backend_pid()
              AND (
                a.query ~ ('\m' || :schema || '\M')
                OR a.pid IN (
                  SELECT l.pid
                  FROM pg_locks l
                  JOIN pg_class c ON c.oid = l.relation
                  JOIN pg_namespace n ON n.oid = c.relnamespace
                  WHERE n.nspname = :schema
                )
              )
            """,
            {"schema": schema_name},
        )

    # ── Introspection ───────────────────────────────────────────────────

    async def list_tables(self, schema_name: str) -> list[str]:
        result = await self._conn.execute(
            text(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = :schema AND table_type = 'BASE TABLE' ORDER BY table_name"
            ),
            {"schema": schema_name},
        )
        return [row.table_name for row in result]

    async def get_columns(self, schema_name: str, table_name: str) -> dict[str, ColumnInfo]:
        result = await self._conn.execute(
            text(
                """
                SELECT column_name, data_type, is_nullable, column_default, character_maximum_length
                FROM information_schema.columns
                WHERE table_schema = :schema AND table_name = :table
                ORDER BY ordinal_position
                """
            ),
            {"schema": schema_name, "table": table_name},
        )
        return {
            row.column_name: ColumnInfo(
                data_type=row.data_type,
                nullable=row.is_nullable == "YES",
                default=row.column_default,
                max_length=row.character_maximum_length,
            )
            for row in result
        }

    async def list_indexes(self, schema_name: str) -> list[str]:
        result = await self._conn.execute(
            text("SELECT indexname FROM pg_indexes WHERE schemaname = :schema ORDER BY indexname"),
            {"schema": schema_name},
        )
        return [row.indexname for row in result]

    async def table_statistics(self, schema_name: str) -> list[TableStatRow]:
        result = await self._conn.execute(
            text(
                """
                SELECT
                    t.table_name AS name,
                    COALESCE(pg_total_relation_size(format('%I.%I', t.table_schema, t.table_name)::regclass), 0)
                        AS size_bytes,
                    COALESCE(s.n_tup_ins, 0) AS inserts,
                    COALESCE(s.n_tup_upd, 0) AS updates,
                    COALESCE(s.n_tup_del, 0) AS deletes,
                    COALESCE(s.n_live_tup, 0) AS live_tuples
                FROM information_schema.tables t
                LEFT JOIN pg_stat_user_tables s
                    ON s.schemaname = t.table_schema AND s.relname = t.table_name
                WHERE t.table_schema = :schema AND t.table_type = 'BASE TABLE'
                ORDER BY size_bytes DESC, t.table_name
                """
            ),
            {"schema": schema_name},
        )
        return [
            TableStatRow(
                name=row.name,
                size_bytes=int(row.size_bytes),
                inserts=int(row.inserts),
                updates=int(row.updates),
                deletes=int(row.deletes),
                live_tuples=int(row.live_tuples),
            )
            for row in result
        ]

    # ── DDL ─────────────────────────────────────────────────────────────

    async def create_table(self, schema_name: str, table: Table) -> None:
        await self._conn.execute(
            CreateTable(table, if_not_exists=True),
            execution_options=self._translate(schema_name),
        )

    async def create_index(self, schema_name: str, index: IndexSpec) -> None:
        columns = ", ".join(quote_ident(column) for column in index.columns)
        sql = (
            f"CREATE INDEX IF NOT EXISTS {quote_ident(index.name)} "
            f"ON {qualified(schema_name, index.table)} ({columns})"
        )
        if index.where:
            sql += f" WHERE {index.where}"
        await self._conn.execute(text(sql))

    async def enable_isolation_policy(self, schema_name: str, table_name: str) -> None:
        target = qualified(schema_name, table_name)
        # schema_name is allow-listed above, so it is safe inside the literal
        predicate = f"current_schema() = '{schema_name}'"
        await self._conn.execute(text(f"ALTER TABLE {target} ENABLE ROW LEVEL SECURITY"))
        await self._conn.execute(text(f"ALTER TABLE {target} FORCE ROW LEVEL SECURITY"))
        await self._conn.execute(text(f"DROP POLICY IF EXISTS tenant_isolation ON {target}"))
        await self._conn.execute(
            text(
                f"CREATE POLICY tenant_isolation ON {target} FOR ALL "
                f"USING ({predicate}) WITH CHECK ({predicate})"
            )
        )

    async def forced_rls_tables(self, schema_name: str) -> list[str]:
        result = await self._conn.execute(
            text(
                """
                SELECT c.relname
                FROM pg_class c
                JOIN pg_namespace n ON c.relnamespace = n.oid
                WHERE n.nspname = :schema AND c.relkind = 'r' AND c.relforcerowsecurity
                ORDER BY c.relname
                """
            ),
            {"schema": schema_name},
        )
        return [row.relname for row in result]

    async def set_force_rls(self, schema_name: str, table_name: str, enabled: bool) -> None:
        clause = "FORCE" if enabled else "NO FORCE"
        await self._conn.execute(
            text(f"ALTER TABLE {qualified(schema_name, table_name)} {clause} ROW LEVEL SECURITY")
        )

    async def clone_table(self, source_schema: str, target_schema: str, table_name: str) -> None:
        await self._conn.execute(
            text(
                f"CREATE TABLE {qualified(target_schema, table_name)} "
                f"(LIKE {qualified(source_schema, table_name)} INCLUDING ALL)"
            )
        )

    # ── Rows ────────────────────────────────────────────────────────────

    async def insert_rows(self, schema_name: str, table_name: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        table = TenantBase.metadata.tables.get(f"{TENANT_PLACEHOLDER}.{validate_identifier(table_name)}")
        if table is None:
            raise ValueError(f"Unknown tenant table '{table_name}'")
        await self._conn.execute(insert(table), rows, execution_options=self._translate(schema_name))

    async def count_rows(self, schema_name: str, table_name: str) -> int:
        return await self._count(f"SELECT count(*) FROM {qualified(schema_name, table_name)}")

    async def count_legacy_rows(
        self, legacy_schema: str, table_name: str, tenant_column: str, tenant_key: str
    ) -> int:
        return await self._count(
            f"SELECT count(*) FROM {qualified(legacy_schema, table_name)} "
            f"WHERE {quote_ident(tenant_column)}::text = :tenant_key",
            {"tenant_key": str(tenant_key)},
        )

    async def sample_rows(self, table_name: str, limit: int) -> list[dict[str, Any]]:
        result = await self._conn.execute(
            text(f"SELECT * FROM {quote_ident(table_name)} LIMIT :limit"),
            {"limit": limit},
        )
        return [dict(row._mapping) for row in result]

    # ── Routing ─────────────────────────────────────────────────────────

    async def set_search_path(self, schemas: list[str]) -> None:
        path = ", ".join(quote_ident(schema) for schema in schemas)
        await self._conn.execute(text(f"SET search_path TO {path}"))

    async def get_search_path(self) -> list[str]:
        value = await self._scalar("SHOW search_path")
        return parse_search_path(value or "")

    # ── Integrity Probes ────────────────────────────────────────────────

    async def count_orphans(self, schema_name: str, rule: ForeignKeyRule) -> int:
        column = quote_ident(rule.column)
        reference = quote_ident(rule.reference_column)
        return await self._count(
            f"""
            SELECT count(*)
            FROM {qualified(schema_name, rule.table)} t
            LEFT JOIN {qualified(schema_name, rule.reference_table)} r ON t.{column} = r.{reference}
            WHERE r.{reference} IS NULL AND t.{column} IS NOT NULL
            """
        )

    async def find_duplicates(
        self, schema_name: str, rule: UniqueRule, limit: int
    ) -> tuple[int, list[dict[str, Any]]]:
        columns = ", ".join(quote_ident(column) for column in rule.columns)
        grouped = (
            f"SELECT {columns}, count(*) AS duplicate_count "
            f"FROM {qualified(schema_name, rule.table)} "
            f"GROUP BY {columns} HAVING count(*) > 1"
        )
        group_count = await self._count(f"SELECT count(*) FROM ({grouped}) d")
        if group_count == 0:
            return 0, []
        result = await self._conn.execute(
            text(f"{grouped} ORDER BY duplicate_count DESC LIMIT :limit"),
            {"limit": limit},
        )
        return group_count, [dict(row._mapping) for row in result]

    async def count_inconsistent(self, schema_name: str, rule: ConsistencyRule) -> int:
        (link_column, link_reference), *compared = rule.column_pairs
        mismatch = " OR ".join(
            f"c.{quote_ident(column)} IS DISTINCT FROM p.{quote_ident(reference)}"
            for column, reference in compared
        )
        return await self._count(
            f"""
            SELECT count(*)
            FROM {qualified(schema_name, rule.table)} c
            JOIN {qualified(schema_name, rule.reference_table)} p
                ON c.{quote_ident(link_column)} = p.{quote_ident(link_reference)}
            WHERE {mismatch or 'false'}
            """
        )

    async def count_out_of_range(self, schema_name: str, rule: RangeRule) -> int:
        column = quote_ident(rule.column)
        return await self._count(
            f"SELECT count(*) FROM {qualified(schema_name, rule.table)} "
            f"WHERE {column} < :minimum OR {column} > :maximum",
            {"minimum": rule.minimum, "maximum": rule.maximum},
        )

    async def count_computed_mismatches(self, schema_name: str, rule: ComputedFieldRule) -> int:
        target = quote_ident(rule.target)
        numerator = quote_ident(rule.numerator)
        denominator = quote_ident(rule.denominator)
        return await self._count(
            f"""
            SELECT count(*)
            FROM {qualified(schema_name, rule.table)}
            WHERE {denominator} > 0
              AND {numerator} IS NOT NULL
              AND {target} IS NOT NULL
              AND abs({target} - ({numerator}::numeric / {denominator} * :scale)) > :tolerance
            """,
            {"scale": rule.scale, "tolerance": rule.tolerance},
        )

    async def count_future_dated(self, schema_name: str, rule: FutureDateRule) -> int:
        return await self._count(
            f"SELECT count(*) FROM {qualified(schema_name, rule.table)} WHERE {quote_ident(rule.column)} > now()"
        )

    async def count_childless_parents(self, schema_name: str, rule: PopulationRule) -> int:
        return await self._count(
            f"""
            SELECT count(*)
            FROM {qualified(schema_name, rule.parent_table)} p
            WHERE NOT EXISTS (
                SELECT 1 FROM {qualified(schema_name, rule.child_table)} c
                WHERE c.{quote_ident(rule.child_column)} = p.{quote_ident(rule.parent_column)}
            )
            """
        )

    # ── Migration Ledger ────────────────────────────────────────────────

    async def ensure_migration_ledger(self, schema_name: str) -> None:
        await self.create_table(schema_name, MIGRATION_LEDGER_TABLE)

    async def get_applied_versions(self, schema_name: str) -> list[int]:
        ledger = qualified(schema_name, MIGRATION_LEDGER_TABLE.name)
        result = await self._conn.execute(text(f"SELECT version FROM {ledger} ORDER BY version"))
        return [int(row.version) for row in result]

    async def record_migration(self, schema_name: str, version: int, name: str) -> None:
        ledger = qualified(schema_name, MIGRATION_LEDGER_TABLE.name)
        await self._conn.execute(
            text(f"INSERT INTO {ledger} (version, name) VALUES (:version, :name) ON CONFLICT (version) DO NOTHING"),
            {"version": version, "name": name},
        )


# ── Connection Factory ──────────────────────────────────────────────────────


@asynccontextmanager
async def connect_catalog(engine: AsyncEngine | None = None) -> AsyncGenerator[PostgresCatalog, None]:
    """Yield a PostgresCatalog on a fresh AUTOCOMMIT connection.

    The pool checkout listener runs RESET ALL, so routing changes made
    through this catalog never outlive the connection's checkout.
    """
    engine = engine or get_engine()
    async with engine.connect() as conn:
        conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        yield PostgresCatalog(conn)
