"""Prometheus metrics for schema lifecycle operations.

Provides:
- track_schema_operation(): Context manager recording count/duration/outcome
- record_validation(): Counter of tenant validation outcomes
- get_metrics_text(): Exposition-format payload for scraping
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

# ── Schema Operation Metrics ────────────────────────────────────────────────

schema_operations_total = Counter(
    "tenant_schema_operations_total",
    "Total structural schema operations",
    ["operation", "outcome"],
)

schema_operation_duration_seconds = Histogram(
    "tenant_schema_operation_duration_seconds",
    "Structural schema operation duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
)

migration_units_applied_total = Counter(
    "tenant_migration_units_applied_total",
    "Migration units applied across all tenant schemas",
)

# ── Validation Metrics ──────────────────────────────────────────────────────

tenant_validations_total = Counter(
    "tenant_validations_total",
    "Tenant validation runs by overall status",
    ["status"],
)


@asynccontextmanager
async def track_schema_operation(operation: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks a structural operation.

    Usage:
        async with track_schema_operation("create_schema"):
            await provisioner.create(...)

    The outcome label is "success" unless the block raises, in which case it
    is the exception class name (e.g. "OperationInProgress").
    """
    tracker: dict[str, Any] = {"outcome": "success"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception as exc:
        tracker["outcome"] = type(exc).__name__
        raise
    finally:
        duration = time.perf_counter() - start_time
        schema_operations_total.labels(operation=operation, outcome=tracker["outcome"]).inc()
        schema_operation_duration_seconds.labels(operation=operation).observe(duration)


def record_validation(status: str) -> None:
    tenant_validations_total.labels(status=status).inc()


def get_metrics_text() -> bytes:
    """Return all registered metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)
