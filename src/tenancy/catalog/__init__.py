"""Database catalog gateway -- every statement a tenant service sends to PostgreSQL.

Provides abstract SchemaCatalog interface with concrete implementations:
- PostgresCatalog: asyncpg-backed connection in AUTOCOMMIT mode
- connect_catalog: async context manager handing out a PostgresCatalog

Services and validators depend only on SchemaCatalog, so they run unchanged
against an in-memory catalog in tests.
"""

from src.tenancy.catalog.adapter import ColumnInfo, SchemaCatalog, TableStatRow
from src.tenancy.catalog.postgres import PostgresCatalog, connect_catalog, parse_search_path

__all__ = [
    "SchemaCatalog",
    "ColumnInfo",
    "TableStatRow",
    "PostgresCatalog",
    "connect_catalog",
    "parse_search_path",
]
