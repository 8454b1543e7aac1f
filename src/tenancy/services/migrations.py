"""Ordered migration units applied inside a tenant schema.

Each unit is identified by an ascending integer version and must be
idempotent: re-running it against a schema where it already applied (fully
or partially) is a no-op. Applied versions are recorded in the schema's own
``schema_migrations`` ledger.

A failing unit stops the run. Units applied before it stay applied; undoing
them means restoring the pre-migration snapshot explicitly.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.core.context import ContextSwitcher
from src.tenancy.core.database import TenantBase
from src.tenancy.core.errors import MigrationUnitFailure, SchemaNotFound
from src.tenancy.core.monitoring import migration_units_applied_total
from src.tenancy.schemas.expected import TENANT_INDEXES
from src.tenancy.schemas.results import MigrationResult

logger = structlog.get_logger(__name__)

ApplyFn = Callable[[SchemaCatalog, str], Awaitable[None]]


@dataclass(frozen=True)
class MigrationUnit:
    version: int
    name: str
    apply: ApplyFn

    @property
    def label(self) -> str:
        return f"{self.version:04d}_{self.name}"


# ── Default Units ───────────────────────────────────────────────────────────


def _create_tables(*names: str) -> ApplyFn:
    async def apply(catalog: SchemaCatalog, schema_name: str) -> None:
        for name in names:
            await catalog.create_table(schema_name, TenantBase.metadata.tables[f"tenant.{name}"])

    return apply


async def _create_indexes(catalog: SchemaCatalog, schema_name: str) -> None:
    for index in TENANT_INDEXES:
        await catalog.create_index(schema_name, index)


DEFAULT_UNITS: tuple[MigrationUnit, ...] = (
    MigrationUnit(1, "create_core_tables", _create_tables("students", "courses")),
    MigrationUnit(2, "create_enrollment_tables", _create_tables("enrollments", "grades")),
    MigrationUnit(3, "create_activity_logs", _create_tables("activity_logs")),
    MigrationUnit(4, "create_indexes", _create_indexes),
)

HEAD_VERSION = DEFAULT_UNITS[-1].version


# ── Runner ──────────────────────────────────────────────────────────────────


class MigrationRunner:
    """Applies not-yet-applied units in ascending version order."""

    def __init__(
        self,
        catalog: SchemaCatalog,
        switcher: ContextSwitcher,
        units: Sequence[MigrationUnit] = DEFAULT_UNITS,
    ) -> None:
        versions = [unit.version for unit in units]
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate migration versions: {versions}")
        self._catalog = catalog
        self._switcher = switcher
        self._units = sorted(units, key=lambda unit: unit.version)

    @property
    def units(self) -> list[MigrationUnit]:
        return list(self._units)

    @property
    def head_version(self) -> int | None:
        return self._units[-1].version if self._units else None

    async def _applied_versions(self, schema_name: str) -> set[int]:
        if not await self._catalog.schema_exists(schema_name):
            raise SchemaNotFound(schema_name)
        await self._catalog.ensure_migration_ledger(schema_name)
        return set(await self._catalog.get_applied_versions(schema_name))

    async def pending(self, schema_name: str) -> list[MigrationUnit]:
        applied = await self._applied_versions(schema_name)
        return [unit for unit in self._units if unit.version not in applied]

    async def run(self, schema_name: str, target_version: int | None = None) -> MigrationResult:
        """Apply pending units up to ``target_version`` (default: all).

        Raises:
            SchemaNotFound: the schema does not exist
            MigrationUnitFailure: a unit raised; later units were skipped
        """
        applied = await self._applied_versions(schema_name)
        result = MigrationResult(schema_name=schema_name)

        for unit in self._units:
            if target_version is not None and unit.version > target_version:
                break
            if unit.version in applied:
                result.already_applied.append(unit.version)
                continue

            log = logger.bind(schema_name=schema_name, version=unit.version, unit=unit.name)
            try:
                async with self._switcher.use(schema_name):
                    await unit.apply(self._catalog, schema_name)
                    await self._catalog.record_migration(schema_name, unit.version, unit.name)
            except Exception as exc:
                log.error("migration_unit_failed", error=str(exc), applied=result.applied)
                raise MigrationUnitFailure(
                    schema_name, unit.version, unit.name, applied=list(result.applied), cause=exc
                ) from exc

            applied.add(unit.version)
            result.applied.append(unit.version)
            migration_units_applied_total.inc()
            log.info("migration_unit_applied")

        result.current_version = max(applied) if applied else None
        return result

    async def stamp(self, schema_name: str) -> int | None:
        """Record every unit as applied without running it.

        Used right after provisioning, which builds the head structure directly.
        """
        await self._applied_versions(schema_name)
        for unit in self._units:
            await self._catalog.record_migration(schema_name, unit.version, unit.name)
        logger.debug("migrations_stamped", schema_name=schema_name, version=self.head_version)
        return self.head_version
