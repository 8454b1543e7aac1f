"""Audit trail for structural schema operations.

Every create/drop/migrate/restore/clone emits one AuditEvent when it
finishes, whatever the outcome. The default sink writes the event as a
structured log line under the ``tenancy.audit`` logger.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, Field


class AuditEvent(BaseModel):
    operation: str
    tenant_id: str
    schema_name: str | None = None
    outcome: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: dict[str, Any] = Field(default_factory=dict)


class AuditLogger(ABC):
    """Abstract audit sink."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        ...


class StructlogAuditLogger(AuditLogger):
    def __init__(self, logger_name: str = "tenancy.audit") -> None:
        self._logger = structlog.get_logger(logger_name)

    async def record(self, event: AuditEvent) -> None:
        self._logger.info("schema_operation_audited", **event.model_dump(mode="json"))
