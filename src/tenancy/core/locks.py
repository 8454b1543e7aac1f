"""Per-tenant operation locks for structural schema operations.

At most one of create/drop/migrate/restore may run for a tenant at a time.
A second caller does not wait: it fails immediately with OperationInProgress
naming the operation that holds the lock.

Two backends:
- InMemoryOperationLocks: a single process (default)
- RedisOperationLocks: many processes sharing one Redis (SET NX EX + token)
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog

from src.tenancy.config import LockBackend, Settings, get_settings
from src.tenancy.core.errors import OperationInProgress

logger = structlog.get_logger(__name__)


class OperationLocks(ABC):
    """Abstract per-tenant lock registry."""

    @abstractmethod
    def hold(self, tenant_id: str, operation: str) -> AsyncGenerator[None, None]:
        """Async context manager holding the tenant's lock for ``operation``."""
        ...


# ── In-process backend ──────────────────────────────────────────────────────


class InMemoryOperationLocks(OperationLocks):
    """Lock map for a single event loop.

    The check-and-set in ``hold`` contains no await, so two coroutines cannot
    both observe the tenant as free.
    """

    def __init__(self) -> None:
        self._held: dict[str, str] = {}

    def holder(self, tenant_id: str) -> str | None:
        return self._held.get(tenant_id)

    @asynccontextmanager
    async def hold(self, tenant_id: str, operation: str) -> AsyncGenerator[None, None]:
        held_by = self._held.get(tenant_id)
        if held_by is not None:
            raise OperationInProgress(tenant_id, operation, held_by)
        self._held[tenant_id] = operation
        logger.debug("operation_lock_acquired", tenant_id=tenant_id, operation=operation)
        try:
            yield
        finally:
            self._held.pop(tenant_id, None)
            logger.debug("operation_lock_released", tenant_id=tenant_id, operation=operation)


# ── Redis backend ───────────────────────────────────────────────────────────

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisOperationLocks(OperationLocks):
    """Distributed locks keyed ``tenancy:lock:{tenant_id}``.

    The value is ``{operation}:{token}`` so a contending caller can report
    which operation holds the lock. Keys expire after ``ttl_seconds`` in case
    the holder dies without releasing.
    """

    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: int = 900) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds

    @staticmethod
    def _key(tenant_id: str) -> str:
        return f"tenancy:lock:{tenant_id}"

    @asynccontextmanager
    async def hold(self, tenant_id: str, operation: str) -> AsyncGenerator[None, None]:
        key = self._key(tenant_id)
        value = f"{operation}:{uuid.uuid4().hex}"
        acquired = await self._redis.set(key, value, nx=True, ex=self._ttl)
        if not acquired:
            current = await self._redis.get(key)
            held_by = current.split(":", 1)[0] if current else None
            raise OperationInProgress(tenant_id, operation, held_by)
        logger.debug("operation_lock_acquired", tenant_id=tenant_id, operation=operation, backend="redis")
        try:
            yield
        finally:
            released = await self._redis.eval(_RELEASE_SCRIPT, 1, key, value)
            if not released:
                logger.warning("operation_lock_expired_before_release", tenant_id=tenant_id, operation=operation)


def get_operation_locks(settings: Settings | None = None) -> OperationLocks:
    """Build the lock backend selected by OPERATION_LOCK_BACKEND."""
    settings = settings or get_settings()
    if settings.OPERATION_LOCK_BACKEND == LockBackend.redis:
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        return RedisOperationLocks(client, ttl_seconds=settings.OPERATION_LOCK_TTL_SECONDS)
    return InMemoryOperationLocks()
