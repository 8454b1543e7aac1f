"""Tenant registry repository -- async access to shared.tenants.

Uses the session_factory callable pattern: each method opens its own
AsyncSession from an async generator and commits before returning.
Only the schema lifecycle fields (schema_name, schema_version,
schema_created_at) are written here.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.tenancy.core.errors import TenantNotFound
from src.tenancy.models.shared import Tenant
from src.tenancy.schemas.tenant import TenantRecord

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncGenerator[AsyncSession, None]]


def _model_to_record(model: Tenant) -> TenantRecord:
    return TenantRecord(
        id=str(model.id),
        slug=model.slug,
        name=model.name,
        schema_name=model.schema_name,
        schema_version=model.schema_version,
        schema_created_at=model.schema_created_at,
        is_active=model.is_active,
    )


def _as_uuid(tenant_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(tenant_id))
    except ValueError:
        raise TenantNotFound(tenant_id)


class TenantRepository:
    """Reads and updates tenant rows in the shared registry."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, tenant_id: str) -> TenantRecord:
        """Return the tenant or raise TenantNotFound."""
        async for session in self._session_factory():
            model = await session.get(Tenant, _as_uuid(tenant_id))
            if model is None:
                raise TenantNotFound(tenant_id)
            return _model_to_record(model)
        raise TenantNotFound(tenant_id)

    async def list_active(self) -> list[TenantRecord]:
        async for session in self._session_factory():
            result = await session.execute(
                select(Tenant).where(Tenant.is_active.is_(True)).order_by(Tenant.created_at)
            )
            return [_model_to_record(model) for model in result.scalars().all()]
        return []

    async def _update(self, tenant_id: str, **values: object) -> None:
        async for session in self._session_factory():
            result = await session.execute(
                update(Tenant).where(Tenant.id == _as_uuid(tenant_id)).values(**values)
            )
            if result.rowcount == 0:
                raise TenantNotFound(tenant_id)
            await session.commit()
            logger.debug("tenant_schema_fields_updated", tenant_id=tenant_id, fields=sorted(values))

    async def set_schema(self, tenant_id: str, schema_name: str, schema_version: int | None) -> None:
        """Claim a freshly provisioned schema for the tenant."""
        await self._update(
            tenant_id,
            schema_name=schema_name,
            schema_version=schema_version,
            schema_created_at=datetime.now(timezone.utc),
        )

    async def clear_schema(self, tenant_id: str) -> None:
        await self._update(tenant_id, schema_name=None, schema_version=None, schema_created_at=None)

    async def set_schema_version(self, tenant_id: str, schema_version: int | None) -> None:
        await self._update(tenant_id, schema_version=schema_version)
