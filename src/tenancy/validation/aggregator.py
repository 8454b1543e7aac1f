"""Combined tenant validation.

Runs, in order: structural, data migration completeness, integrity,
relationship population, isolation, performance. Findings are merged into one
ValidationResult. Unexpected failures are recorded on the result with status
``error`` instead of being raised, so a sweep over many tenants always
completes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from contextlib import AbstractAsyncContextManager, nullcontext

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.catalog.postgres import connect_catalog
from src.tenancy.config import Settings, get_settings
from src.tenancy.core.context import ContextSwitcher
from src.tenancy.core.errors import ValidationException
from src.tenancy.core.monitoring import record_validation
from src.tenancy.schemas.results import ValidationResult, ValidationStatus
from src.tenancy.schemas.tenant import TenantRecord
from src.tenancy.validation.data_migration import DataMigrationChecker
from src.tenancy.validation.integrity import IntegrityValidator
from src.tenancy.validation.isolation import IsolationValidator
from src.tenancy.validation.performance import PerformanceProbe
from src.tenancy.validation.relationships import RelationshipChecker
from src.tenancy.validation.structural import StructuralValidator

logger = structlog.get_logger(__name__)

CatalogFactory = Callable[[], AbstractAsyncContextManager[SchemaCatalog]]


def error_result(
    tenant_id: str,
    cause: BaseException,
    tenant_name: str = "",
    schema_name: str | None = None,
) -> ValidationResult:
    """ValidationResult for a tenant whose validation could not run."""
    return ValidationResult(
        tenant_id=tenant_id,
        tenant_name=tenant_name,
        schema_name=schema_name,
        overall_status=ValidationStatus.error,
        errors=[str(ValidationException(tenant_id, cause))],
    )


class MigrationValidationService:
    """Validates tenant schemas after migration to schema-per-tenant."""

    def __init__(self, catalog_factory: CatalogFactory = connect_catalog, settings: Settings | None = None) -> None:
        self._catalog_factory = catalog_factory
        self._settings = settings or get_settings()

    async def validate_tenant(self, tenant: TenantRecord) -> ValidationResult:
        result = ValidationResult(tenant_id=tenant.id, tenant_name=tenant.name, schema_name=tenant.schema_name)
        log = logger.bind(tenant_id=tenant.id, schema_name=tenant.schema_name)

        try:
            if not tenant.schema_name:
                result.errors.append(f"Tenant '{tenant.name}' has no schema assigned")
            else:
                await self._run_validators(tenant, tenant.schema_name, result)
            result.overall_status = ValidationStatus.passed if not result.errors else ValidationStatus.failed
        except Exception as exc:
            log.exception("tenant_validation_error")
            result.errors.append(str(ValidationException(tenant.id, exc)))
            result.overall_status = ValidationStatus.error

        record_validation(result.overall_status.value)
        log.info(
            "tenant_validated",
            status=result.overall_status.value,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    async def validate_tenants(self, tenants: Iterable[TenantRecord]) -> list[ValidationResult]:
        return [await self.validate_tenant(tenant) for tenant in tenants]

    async def _run_validators(self, tenant: TenantRecord, schema_name: str, result: ValidationResult) -> None:
        settings = self._settings
        async with self._catalog_factory() as catalog:
            switcher = ContextSwitcher(catalog, settings.DEFAULT_SCHEMA)

            structure = await StructuralValidator(catalog).validate(schema_name)
            result.schema_structure = structure
            result.errors.extend(structure.errors)
            result.warnings.extend(structure.warnings)

            # Forced isolation policies only admit rows while the tenant schema is current.
            exists = await catalog.schema_exists(schema_name)
            async with switcher.use(schema_name) if exists else nullcontext():
                data = await DataMigrationChecker(
                    catalog,
                    legacy_schema=settings.LEGACY_SCHEMA,
                    tenant_column=settings.LEGACY_TENANT_COLUMN,
                ).check(tenant, schema_name)
                result.data_migration = data
                result.errors.extend(data.errors)
                result.warnings.extend(data.warnings)

                integrity = await IntegrityValidator(
                    catalog, example_limit=settings.DUPLICATE_EXAMPLE_LIMIT
                ).validate(schema_name)
                result.data_integrity = integrity
                result.errors.extend(integrity.errors)
                result.warnings.extend(integrity.warnings)

                result.relationships = await RelationshipChecker(catalog).check(schema_name)

            isolation = await IsolationValidator(catalog, switcher).validate(schema_name)
            result.tenant_isolation = isolation
            result.errors.extend(isolation.errors)

            performance = await PerformanceProbe(
                catalog,
                switcher,
                large_schema_threshold_bytes=settings.LARGE_SCHEMA_THRESHOLD_BYTES,
                slow_query_threshold_ms=settings.SLOW_QUERY_THRESHOLD_MS,
                sample_limit=settings.SAMPLE_QUERY_LIMIT,
            ).probe(schema_name)
            result.performance = performance
            result.warnings.extend(performance.warnings)
