"""Tenant schema lifecycle service.

Entry point for every structural and validation operation on tenant schemas.
Each structural operation:
- holds the tenant's operation lock (one structural operation per tenant)
- is counted and timed in Prometheus (track_schema_operation)
- emits one audit event with its outcome
- opens its own catalog connection, so routing changes never leak

Recovery: a failed create or clone drops only the schema it was building.
A failed migration keeps the units it applied and carries the pre-migration
snapshot on the MigrationUnitFailure for an explicit restore_schema().
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.catalog.postgres import connect_catalog
from src.tenancy.config import Settings, get_settings
from src.tenancy.core.context import ContextSwitcher
from src.tenancy.core.database import get_shared_session
from src.tenancy.core.errors import MigrationUnitFailure, SchemaNotFound
from src.tenancy.core.identifiers import generate_schema_name, validate_identifier
from src.tenancy.core.locks import OperationLocks, get_operation_locks
from src.tenancy.core.monitoring import record_validation, track_schema_operation
from src.tenancy.schemas.results import (
    CloneResult,
    CreateSchemaResult,
    DropSchemaResult,
    MigrationResult,
    RestoreResult,
    SchemaStatistics,
    Snapshot,
    ValidationResult,
)
from src.tenancy.schemas.tenant import CreateSchemaOptions, MigrateOptions, TenantRecord
from src.tenancy.services.audit import AuditEvent, AuditLogger, StructlogAuditLogger
from src.tenancy.services.backup import BackupService, PgDumpBackupService
from src.tenancy.services.migrations import DEFAULT_UNITS, MigrationRunner, MigrationUnit
from src.tenancy.services.provisioning import SchemaProvisioner
from src.tenancy.services.tenant_repository import TenantRepository
from src.tenancy.validation.aggregator import MigrationValidationService, error_result
from src.tenancy.validation.performance import collect_schema_statistics

logger = structlog.get_logger(__name__)

CatalogFactory = Callable[[], AbstractAsyncContextManager[SchemaCatalog]]


class TenantSchemaService:
    """Creates, drops, migrates, restores, clones and validates tenant schemas."""

    def __init__(
        self,
        repository: TenantRepository,
        catalog_factory: CatalogFactory = connect_catalog,
        locks: OperationLocks | None = None,
        backup: BackupService | None = None,
        audit: AuditLogger | None = None,
        settings: Settings | None = None,
        units: Sequence[MigrationUnit] = DEFAULT_UNITS,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._catalog_factory = catalog_factory
        self._locks = locks or get_operation_locks(self._settings)
        self._backup = backup or PgDumpBackupService(catalog_factory, self._settings)
        self._audit = audit or StructlogAuditLogger()
        self._units = tuple(units)
        self._validator = MigrationValidationService(catalog_factory, self._settings)

    # ── Helpers ─────────────────────────────────────────────────────────

    def schema_name_for(self, tenant: TenantRecord) -> str:
        """The tenant's recorded schema, or the one derived from its slug."""
        if tenant.schema_name:
            return validate_identifier(tenant.schema_name)
        return generate_schema_name(tenant.slug, self._settings.TENANT_SCHEMA_PREFIX)

    def _switcher(self, catalog: SchemaCatalog) -> ContextSwitcher:
        return ContextSwitcher(catalog, self._settings.DEFAULT_SCHEMA)

    def _runner(self, catalog: SchemaCatalog) -> MigrationRunner:
        return MigrationRunner(catalog, self._switcher(catalog), self._units)

    def _provisioner(self, catalog: SchemaCatalog) -> SchemaProvisioner:
        return SchemaProvisioner(catalog, self._switcher(catalog), runner=self._runner(catalog))

    @asynccontextmanager
    async def _operation(self, operation: str, lock_key: str) -> AsyncGenerator[dict[str, Any], None]:
        """Metrics, lock and audit around one structural operation.

        Entering acquires the lock before the first await that can suspend,
        so two operations started together cannot both get in.
        """
        audit: dict[str, Any] = {"schema_name": None, "details": {}}
        outcome = "success"
        try:
            async with track_schema_operation(operation):
                async with self._locks.hold(lock_key, operation):
                    yield audit
        except Exception as exc:
            outcome = type(exc).__name__
            raise
        finally:
            await self._audit.record(
                AuditEvent(
                    operation=operation,
                    tenant_id=lock_key,
                    schema_name=audit["schema_name"],
                    outcome=outcome,
                    details=audit["details"],
                )
            )

    # ── Structural Operations ───────────────────────────────────────────

    async def create_schema(self, tenant_id: str, options: CreateSchemaOptions | None = None) -> CreateSchemaResult:
        options = options or CreateSchemaOptions()
        async with self._operation("create_schema", tenant_id) as audit:
            tenant = await self._repository.get(tenant_id)
            schema_name = self.schema_name_for(tenant)
            audit["schema_name"] = schema_name

            async with self._catalog_factory() as catalog:
                result = await self._provisioner(catalog).create(schema_name, options)

            await self._repository.set_schema(tenant_id, schema_name, result.schema_version)
            audit["details"] = {"tables": len(result.tables_created), "indexes": len(result.indexes_created)}
            return result

    async def drop_schema(self, tenant_id: str, force: bool = False) -> DropSchemaResult:
        """Drop the tenant's schema, taking a snapshot first unless forced."""
        async with self._operation("drop_schema", tenant_id) as audit:
            tenant = await self._repository.get(tenant_id)
            schema_name = self.schema_name_for(tenant)
            audit["schema_name"] = schema_name

            async with self._catalog_factory() as catalog:
                if not await catalog.schema_exists(schema_name):
                    raise SchemaNotFound(schema_name)

            snapshot = None if force else await self._backup.create_snapshot(tenant_id, schema_name)

            async with self._catalog_factory() as catalog:
                terminated = await self._provisioner(catalog).drop(schema_name)

            await self._repository.clear_schema(tenant_id)
            audit["details"] = {"forced": force, "snapshot": snapshot.snapshot_id if snapshot else None}
            return DropSchemaResult(
                schema_name=schema_name,
                dropped=True,
                snapshot=snapshot,
                terminated_sessions=terminated,
            )

    async def migrate(self, tenant_id: str, options: MigrateOptions | None = None) -> MigrationResult:
        """Apply pending migration units to the tenant's schema.

        Raises:
            SchemaNotFound: the tenant has no schema yet
            MigrationUnitFailure: a unit failed; ``snapshot`` holds the
                pre-migration backup unless ``skip_backup`` was set
        """
        options = options or MigrateOptions()
        async with self._operation("migrate", tenant_id) as audit:
            tenant = await self._repository.get(tenant_id)
            schema_name = self.schema_name_for(tenant)
            audit["schema_name"] = schema_name

            async with self._catalog_factory() as catalog:
                if not await catalog.schema_exists(schema_name):
                    raise SchemaNotFound(schema_name)

            snapshot: Snapshot | None = None
            if not options.skip_backup:
                snapshot = await self._backup.create_snapshot(tenant_id, schema_name)

            async with self._catalog_factory() as catalog:
                try:
                    result = await self._runner(catalog).run(schema_name, options.target_version)
                except MigrationUnitFailure as exc:
                    exc.snapshot = snapshot
                    audit["details"] = {"failed_version": exc.version, "applied": exc.applied}
                    raise

            result.snapshot = snapshot
            await self._repository.set_schema_version(tenant_id, result.current_version)
            audit["details"] = {"applied": result.applied, "version": result.current_version}
            return result

    async def restore_schema(self, tenant_id: str, snapshot: Snapshot) -> RestoreResult:
        """Replace the tenant's schema with a snapshot taken by drop or migrate."""
        async with self._operation("restore_schema", tenant_id) as audit:
            tenant = await self._repository.get(tenant_id)
            if snapshot.tenant_id != tenant.id:
                raise ValueError(f"Snapshot {snapshot.snapshot_id} belongs to tenant {snapshot.tenant_id}")
            audit["schema_name"] = snapshot.schema_name
            audit["details"] = {"snapshot": snapshot.snapshot_id}

            await self._backup.restore_snapshot(snapshot)

            async with self._catalog_factory() as catalog:
                versions = await catalog.get_applied_versions(snapshot.schema_name)
            current_version = max(versions) if versions else None

            if tenant.schema_name == snapshot.schema_name:
                await self._repository.set_schema_version(tenant_id, current_version)
            else:
                await self._repository.set_schema(tenant_id, snapshot.schema_name, current_version)

            return RestoreResult(schema_name=snapshot.schema_name, snapshot=snapshot, current_version=current_version)

    async def clone_schema_structure(self, source_schema: str, target_schema: str) -> CloneResult:
        """Copy the table structure of one schema into a new, empty schema."""
        async with self._operation("clone_schema", f"schema:{target_schema}") as audit:
            audit["schema_name"] = target_schema
            audit["details"] = {"source_schema": source_schema}
            async with self._catalog_factory() as catalog:
                return await self._provisioner(catalog).clone(source_schema, target_schema)

    # ── Read-only Operations ────────────────────────────────────────────

    async def schema_exists(self, schema_name: str) -> bool:
        validate_identifier(schema_name)
        async with self._catalog_factory() as catalog:
            return await catalog.schema_exists(schema_name)

    async def list_tenant_schemas(self) -> list[str]:
        async with self._catalog_factory() as catalog:
            return await catalog.list_schemas(self._settings.TENANT_SCHEMA_PREFIX)

    async def get_schema_statistics(self, schema_name: str) -> SchemaStatistics:
        validate_identifier(schema_name)
        async with self._catalog_factory() as catalog:
            if not await catalog.schema_exists(schema_name):
                raise SchemaNotFound(schema_name)
            return await collect_schema_statistics(catalog, schema_name)

    async def validate_tenant(self, tenant_id: str) -> ValidationResult:
        """Validate one tenant. Never raises; problems become result entries."""
        try:
            tenant = await self._repository.get(tenant_id)
        except Exception as exc:
            logger.warning("tenant_lookup_failed", tenant_id=tenant_id, error=str(exc))
            result = error_result(tenant_id, exc)
            record_validation(result.overall_status.value)
            return result
        return await self._validator.validate_tenant(tenant)

    async def validate_all_tenants(self) -> list[ValidationResult]:
        tenants = await self._repository.list_active()
        results = await self._validator.validate_tenants(tenants)
        logger.info(
            "tenant_validation_sweep_complete",
            total=len(results),
            passed=sum(1 for result in results if result.passed),
        )
        return results


def build_tenant_schema_service(settings: Settings | None = None) -> TenantSchemaService:
    """Service wired to the shared registry and the configured engine."""
    return TenantSchemaService(TenantRepository(get_shared_session), settings=settings)
