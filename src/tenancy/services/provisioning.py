"""Tenant schema provisioning.

Creates a tenant schema with every required table and index, optionally
enabling row level security and seeding rows, and drops or clones schemas.

Steps of create():
1. Refuse (or, with force, drop) an existing schema of the same name
2. CREATE SCHEMA
3. Create tables in dependency order, then indexes, with the schema active
4. Optionally enable isolation policies and insert seed rows
5. Stamp the migration ledger at the head version

Any failure after step 2 drops the new schema and raises
PartialProvisioningFailure, so a half-built schema is never reported as
created.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import Table

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.core.context import ContextSwitcher
from src.tenancy.core.errors import PartialProvisioningFailure, SchemaAlreadyExists, SchemaNotFound
from src.tenancy.core.identifiers import validate_identifier
from src.tenancy.models.tenant import TENANT_TABLES
from src.tenancy.schemas.expected import TENANT_INDEXES, IndexSpec
from src.tenancy.schemas.results import CloneResult, CreateSchemaResult
from src.tenancy.schemas.tenant import CreateSchemaOptions
from src.tenancy.services.migrations import MigrationRunner

logger = structlog.get_logger(__name__)


class SchemaProvisioner:
    """Builds, drops and clones tenant schemas on one catalog connection."""

    def __init__(
        self,
        catalog: SchemaCatalog,
        switcher: ContextSwitcher,
        runner: MigrationRunner | None = None,
        tables: Sequence[Table] = TENANT_TABLES,
        indexes: Sequence[IndexSpec] = TENANT_INDEXES,
    ) -> None:
        self._catalog = catalog
        self._switcher = switcher
        self._runner = runner
        self._tables = tuple(tables)
        self._indexes = tuple(indexes)

    # ── Create ──────────────────────────────────────────────────────────

    async def create(self, schema_name: str, options: CreateSchemaOptions | None = None) -> CreateSchemaResult:
        """Provision ``schema_name``.

        Raises:
            SchemaAlreadyExists: the schema exists and ``force`` is not set
            PartialProvisioningFailure: a step failed and the schema was dropped
        """
        options = options or CreateSchemaOptions()
        validate_identifier(schema_name)
        result = CreateSchemaResult(schema_name=schema_name)
        log = logger.bind(schema_name=schema_name)

        if await self._catalog.schema_exists(schema_name):
            if not options.force:
                raise SchemaAlreadyExists(schema_name)
            log.warning("schema_force_recreate")
            await self.drop(schema_name)

        await self._catalog.create_schema(schema_name)

        try:
            async with self._switcher.use(schema_name):
                for table in self._tables:
                    await self._catalog.create_table(schema_name, table)
                    result.tables_created.append(table.name)

                for index in self._indexes:
                    await self._catalog.create_index(schema_name, index)
                    result.indexes_created.append(index.name)

                if options.enable_isolation_policies:
                    for table in self._tables:
                        await self._catalog.enable_isolation_policy(schema_name, table.name)
                        result.policies_created.append(table.name)

                if options.initial_data:
                    result.rows_seeded = await self._seed(schema_name, options.initial_data)

            if self._runner is not None:
                result.schema_version = await self._runner.stamp(schema_name)
        except Exception as exc:
            result.errors.append(str(exc))
            rolled_back = await self._rollback(schema_name)
            log.error(
                "schema_provisioning_failed",
                error=str(exc),
                tables_created=result.tables_created,
                rolled_back=rolled_back,
            )
            raise PartialProvisioningFailure(schema_name, result, rolled_back=rolled_back) from exc

        result.created = True
        log.info(
            "schema_created",
            tables=len(result.tables_created),
            indexes=len(result.indexes_created),
            policies=len(result.policies_created),
            rows_seeded=result.rows_seeded,
        )
        return result

    async def _seed(self, schema_name: str, initial_data: dict[str, list[dict]]) -> int:
        known = [table.name for table in self._tables]
        unknown = sorted(set(initial_data) - set(known))
        if unknown:
            raise ValueError(f"Seed data for unknown tables: {', '.join(unknown)}")

        seeded = 0
        # Parents before children so foreign keys resolve
        for name in known:
            rows = initial_data.get(name) or []
            if rows:
                await self._catalog.insert_rows(schema_name, name, rows)
                seeded += len(rows)
        return seeded

    async def _rollback(self, schema_name: str) -> bool:
        try:
            await self._catalog.drop_schema(schema_name, cascade=True)
        except Exception as exc:
            logger.error("schema_rollback_failed", schema_name=schema_name, error=str(exc))
            return False
        return True

    # ── Drop ────────────────────────────────────────────────────────────

    async def drop(self, schema_name: str) -> int:
        """Terminate sessions using the schema, then drop it with CASCADE.

        Returns the number of terminated sessions.
        """
        validate_identifier(schema_name)
        terminated = await self._catalog.terminate_sessions(schema_name)
        await self._catalog.drop_schema(schema_name, cascade=True)
        logger.info("schema_dropped", schema_name=schema_name, terminated_sessions=terminated)
        return terminated

    # ── Clone ───────────────────────────────────────────────────────────

    async def clone(self, source_schema: str, target_schema: str) -> CloneResult:
        """Copy the table structure (no rows) of one schema into a new one.

        Raises:
            SchemaNotFound: the source does not exist
            SchemaAlreadyExists: the target already exists
            PartialProvisioningFailure: a table failed to copy; the target was dropped
        """
        validate_identifier(source_schema)
        validate_identifier(target_schema)
        if not await self._catalog.schema_exists(source_schema):
            raise SchemaNotFound(source_schema)
        if await self._catalog.schema_exists(target_schema):
            raise SchemaAlreadyExists(target_schema)

        result = CloneResult(source_schema=source_schema, target_schema=target_schema)
        await self._catalog.create_schema(target_schema)
        try:
            for table_name in await self._catalog.list_tables(source_schema):
                await self._catalog.clone_table(source_schema, target_schema, table_name)
                result.tables_cloned.append(table_name)
        except Exception as exc:
            result.errors.append(str(exc))
            rolled_back = await self._rollback(target_schema)
            logger.error(
                "schema_clone_failed",
                source_schema=source_schema,
                target_schema=target_schema,
                error=str(exc),
            )
            raise PartialProvisioningFailure(target_schema, result, rolled_back=rolled_back) from exc

        result.success = True
        logger.info(
            "schema_cloned",
            source_schema=source_schema,
            target_schema=target_schema,
            tables=len(result.tables_cloned),
        )
        return result
