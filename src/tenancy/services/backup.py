"""Schema snapshots via pg_dump / pg_restore.

Snapshots are taken before destructive operations (unforced drop, migrate)
and restored only on explicit request. Dumps use the custom format (-Fc) of
a single schema. FORCE ROW LEVEL SECURITY is lifted while dumping so the
tenant_isolation policy cannot hide rows from pg_dump, and always restored
afterwards.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from urllib.parse import urlparse

import structlog

from src.tenancy.catalog.adapter import SchemaCatalog
from src.tenancy.config import Settings, get_settings
from src.tenancy.core.errors import BackupError
from src.tenancy.core.identifiers import validate_identifier
from src.tenancy.schemas.results import Snapshot

logger = structlog.get_logger(__name__)

CatalogFactory = Callable[[], AbstractAsyncContextManager[SchemaCatalog]]


class BackupService(ABC):
    """Abstract snapshot collaborator."""

    @abstractmethod
    async def create_snapshot(self, tenant_id: str, schema_name: str) -> Snapshot:
        ...

    @abstractmethod
    async def restore_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the snapshot's schema with the snapshot contents."""
        ...


# ── pg_dump helpers ─────────────────────────────────────────────────────────


def find_pg_tool(tool_name: str) -> str:
    """Locate pg_dump / pg_restore on PATH, else return the bare name."""
    return shutil.which(tool_name) or tool_name


def parse_database_url(database_url: str) -> dict[str, str]:
    """Split DATABASE_URL into libpq connection parameters.

    Driver suffixes such as ``+asyncpg`` are dropped.
    """
    parsed = urlparse(database_url.replace("postgresql+asyncpg://", "postgresql://"))
    return {
        "host": parsed.hostname or "localhost",
        "port": str(parsed.port or 5432),
        "user": parsed.username or "postgres",
        "password": parsed.password or "",
        "dbname": parsed.path.lstrip("/") or "postgres",
    }


def _connection_args(conn_params: dict[str, str]) -> list[str]:
    return [
        "-h", conn_params["host"],
        "-p", conn_params["port"],
        "-U", conn_params["user"],
        "-d", conn_params["dbname"],
    ]


def build_pg_dump_command(conn_params: dict[str, str], schema_name: str, output_file: str) -> list[str]:
    return [
        find_pg_tool("pg_dump"),
        *_connection_args(conn_params),
        "--schema", validate_identifier(schema_name),
        "-Fc",
        "-f", output_file,
    ]


def build_pg_restore_command(conn_params: dict[str, str], input_file: str) -> list[str]:
    return [
        find_pg_tool("pg_restore"),
        *_connection_args(conn_params),
        "--clean",
        "--if-exists",
        "--no-owner",
        "--no-privileges",
        input_file,
    ]


# ── Service ─────────────────────────────────────────────────────────────────


class PgDumpBackupService(BackupService):
    """BackupService writing one ``.dump`` file per snapshot under BACKUP_DIR."""

    def __init__(self, catalog_factory: CatalogFactory, settings: Settings | None = None) -> None:
        self._catalog_factory = catalog_factory
        self._settings = settings or get_settings()

    def _env(self, conn_params: dict[str, str]) -> dict[str, str]:
        env = os.environ.copy()
        env["PGPASSWORD"] = conn_params["password"]
        return env

    async def _run(self, cmd: list[str], env: dict[str, str], tool: str) -> None:
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self._settings.BACKUP_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired as exc:
            raise BackupError(f"{tool} timed out after {self._settings.BACKUP_TIMEOUT_SECONDS}s") from exc
        except FileNotFoundError as exc:
            raise BackupError(f"{tool} not found -- install postgresql-client") from exc
        if result.returncode != 0:
            raise BackupError(f"{tool} failed: {result.stderr.strip()}")

    async def create_snapshot(self, tenant_id: str, schema_name: str) -> Snapshot:
        conn_params = parse_database_url(self._settings.DATABASE_URL)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        snapshot_id = f"{schema_name}_{timestamp}"
        os.makedirs(self._settings.BACKUP_DIR, exist_ok=True)
        output_file = os.path.join(self._settings.BACKUP_DIR, f"{snapshot_id}.dump")

        async with self._catalog_factory() as catalog:
            forced = await catalog.forced_rls_tables(schema_name)
            for table in forced:
                await catalog.set_force_rls(schema_name, table, False)
            try:
                await self._run(
                    build_pg_dump_command(conn_params, schema_name, output_file),
                    self._env(conn_params),
                    "pg_dump",
                )
            finally:
                for table in forced:
                    await catalog.set_force_rls(schema_name, table, True)

        size_bytes = os.path.getsize(output_file) if os.path.exists(output_file) else None
        logger.info("schema_snapshot_created", schema_name=schema_name, location=output_file, size_bytes=size_bytes)
        return Snapshot(
            snapshot_id=snapshot_id,
            tenant_id=tenant_id,
            schema_name=schema_name,
            location=output_file,
            size_bytes=size_bytes,
        )

    async def restore_snapshot(self, snapshot: Snapshot) -> None:
        if not os.path.exists(snapshot.location):
            raise BackupError(f"Snapshot file not found: {snapshot.location}")
        conn_params = parse_database_url(self._settings.DATABASE_URL)

        # Objects created after the dump would block pg_restore's DROP SCHEMA
        async with self._catalog_factory() as catalog:
            await catalog.terminate_sessions(snapshot.schema_name)
            await catalog.drop_schema(snapshot.schema_name, cascade=True)

        await self._run(
            build_pg_restore_command(conn_params, snapshot.location),
            self._env(conn_params),
            "pg_restore",
        )
        logger.info("schema_snapshot_restored", schema_name=snapshot.schema_name, location=snapshot.location)
