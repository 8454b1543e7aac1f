"""Pydantic schemas for tenant records and structural operation options."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TenantRecord(BaseModel):
    """Tenant as seen by the schema lifecycle services."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    name: str
    schema_name: str | None = None
    schema_version: int | None = None
    schema_created_at: datetime | None = None
    is_active: bool = True


class CreateSchemaOptions(BaseModel):
    """Options for provisioning a tenant schema."""

    force: bool = Field(False, description="Drop an existing schema of the same name first")
    enable_isolation_policies: bool = Field(
        False,
        description="Enable and force row level security with a tenant_isolation policy",
    )
    initial_data: dict[str, list[dict[str, Any]]] | None = Field(
        None,
        description="Seed rows keyed by table name, inserted after tables and indexes",
        examples=[{"courses": [{"id": 1, "course_code": "CS101", "title": "Intro", "credits": 3}]}],
    )


class MigrateOptions(BaseModel):
    """Options for running tenant migrations."""

    skip_backup: bool = False
    target_version: int | None = Field(None, ge=1, description="Apply units up to and including this version")
