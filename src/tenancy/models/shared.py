"""Shared schema models -- tables that exist once in the 'shared' schema.

The Tenant model lives here because it's used for tenant resolution and
is not duplicated per tenant schema.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.tenancy.core.database import SharedBase


class Tenant(SharedBase):
    """Registered tenant in the platform.

    Each tenant owns at most one PostgreSQL schema (schema_name). The schema
    fields are null until the schema is provisioned and cleared again when it
    is dropped; schema_version mirrors the head migration unit applied.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    schema_name: Mapped[str | None] = mapped_column(String(63), unique=True, nullable=True)
    schema_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    schema_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
