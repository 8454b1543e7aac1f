"""Schema size statistics and a timed sample query.

Produces warnings only. A failure while probing is itself reported as a
warning, because performance data never decides whether a tenant passes.
"""

from __future__ import annotations

import time

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.core.context import ContextSwitcher
from src.tenancy.schemas.results import PerformanceReport, SchemaStatistics, TableStatistics

logger = structlog.get_logger(__name__)

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(size: int | float) -> str:
    """Human readable size, e.g. ``1536 -> "1.5 KB"``."""
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_UNITS[unit]}"


async def collect_schema_statistics(catalog: SchemaCatalog, schema_name: str) -> SchemaStatistics:
    rows = await catalog.table_statistics(schema_name)
    tables = [
        TableStatistics(
            name=row.name,
            size_bytes=row.size_bytes,
            size_human=format_bytes(row.size_bytes),
            inserts=row.inserts,
            updates=row.updates,
            deletes=row.deletes,
            live_tuples=row.live_tuples,
        )
        for row in rows
    ]
    total = sum(table.size_bytes for table in tables)
    return SchemaStatistics(
        schema_name=schema_name,
        table_count=len(tables),
        total_size_bytes=total,
        total_size_human=format_bytes(total),
        tables=tables,
    )


class PerformanceProbe:
    def __init__(
        self,
        catalog: SchemaCatalog,
        switcher: ContextSwitcher,
        large_schema_threshold_bytes: int = 1024 * 1024 * 1024,
        slow_query_threshold_ms: float = 1000.0,
        sample_limit: int = 100,
        sample_table: str = "students",
    ) -> None:
        self._catalog = catalog
        self._switcher = switcher
        self._large_schema_threshold_bytes = large_schema_threshold_bytes
        self._slow_query_threshold_ms = slow_query_threshold_ms
        self._sample_limit = sample_limit
        self._sample_table = sample_table

    async def probe(self, schema_name: str) -> PerformanceReport:
        report = PerformanceReport()
        try:
            stats = await collect_schema_statistics(self._catalog, schema_name)
            report.schema_stats = stats
            if stats.total_size_bytes > self._large_schema_threshold_bytes:
                report.warnings.append(f"Large schema size: {stats.total_size_human}")

            async with self._switcher.use(schema_name):
                start = time.perf_counter()
                await self._catalog.sample_rows(self._sample_table, self._sample_limit)
                elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            report.sample_query_time_ms = elapsed_ms
            if elapsed_ms > self._slow_query_threshold_ms:
                report.warnings.append(f"Slow query performance: {elapsed_ms}ms")
        except Exception as exc:
            logger.warning("performance_probe_failed", schema_name=schema_name, error=str(exc))
            report.warnings.append(f"Performance validation failed: {exc}")
        return report
