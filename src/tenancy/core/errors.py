"""Exception taxonomy for schema lifecycle operations.

Structural and destructive operations (create, drop, migrate, clone, restore)
raise these directly. Validation converts them into report entries instead;
the ``raise_for_errors()`` helpers on the report models turn a report back
into an exception for callers that prefer to fail fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.tenancy.schemas.results import CloneResult, CreateSchemaResult


class TenancyError(Exception):
    """Base class for all tenancy errors."""


class InvalidIdentifier(TenancyError, ValueError):
    """A schema, table, column or index name failed the allow-list."""

    def __init__(self, name: Any) -> None:
        self.name = name
        super().__init__(f"Invalid SQL identifier: {name!r}")


class SchemaAlreadyExists(TenancyError):
    def __init__(self, schema_name: str) -> None:
        self.schema_name = schema_name
        super().__init__(f"Schema '{schema_name}' already exists")


class NotFoundError(TenancyError):
    """Base for missing namespaces and tenants."""


class SchemaNotFound(NotFoundError):
    def __init__(self, schema_name: str) -> None:
        self.schema_name = schema_name
        super().__init__(f"Schema '{schema_name}' does not exist")


class TenantNotFound(NotFoundError):
    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


class OperationInProgress(TenancyError):
    """Another structural operation already holds the tenant's lock."""

    def __init__(self, tenant_id: str, operation: str, held_by: str | None = None) -> None:
        self.tenant_id = tenant_id
        self.operation = operation
        self.held_by = held_by
        detail = f" ({held_by} running)" if held_by else ""
        super().__init__(f"Operation already in progress for tenant {tenant_id}: cannot {operation}{detail}")


class PartialProvisioningFailure(TenancyError):
    """Provisioning or cloning failed midway; the partially built schema was dropped."""

    def __init__(self, schema_name: str, result: CreateSchemaResult | CloneResult, rolled_back: bool = True) -> None:
        self.schema_name = schema_name
        self.result = result
        self.rolled_back = rolled_back
        errors = "; ".join(result.errors) or "unknown error"
        super().__init__(f"Failed to provision schema '{schema_name}': {errors}")


class MigrationUnitFailure(TenancyError):
    """A migration unit failed. Remaining units were skipped, applied ones kept."""

    def __init__(
        self,
        schema_name: str,
        version: int,
        name: str,
        applied: list[int] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.schema_name = schema_name
        self.version = version
        self.name = name
        self.applied = applied or []
        self.cause = cause
        # Set by the caller once a pre-migration snapshot is known
        self.snapshot: Any = None
        super().__init__(f"Migration {version:04d}_{name} failed in schema '{schema_name}': {cause}")


class BackupError(TenancyError):
    """Snapshot creation or restore failed."""


class ValidationError(TenancyError):
    """Base for validation outcomes raised via ``raise_for_errors()``."""

    def __init__(self, schema_name: str | None, errors: list[str]) -> None:
        self.schema_name = schema_name
        self.errors = list(errors)
        super().__init__(f"{type(self).__name__} in schema '{schema_name}': " + "; ".join(self.errors))


class StructuralMismatch(ValidationError):
    pass


class IntegrityViolation(ValidationError):
    pass


class IsolationFailure(ValidationError):
    pass


class ValidationException(TenancyError):
    """Unexpected lower-level fault while validating a tenant."""

    def __init__(self, tenant_id: str, cause: BaseException) -> None:
        self.tenant_id = tenant_id
        self.cause = cause
        super().__init__(f"Validation failed: {cause}")
