"""SQL identifier allow-listing.

Schema, table, column and index names are interpolated into DDL and catalog
queries because PostgreSQL cannot bind identifiers as parameters. Every such
name must pass ``validate_identifier`` first.
"""

from __future__ import annotations

import re

from src.tenancy.core.errors import InvalidIdentifier

# Lowercase, unquoted-safe identifiers within PostgreSQL's 63 byte limit
IDENTIFIER_PATTERN = re.compile(r"[a-z_][a-z0-9_]{0,62}")

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_]")


def validate_identifier(name: str) -> str:
    """Return ``name`` unchanged if it is an allowed identifier, else raise."""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.fullmatch(name):
        raise InvalidIdentifier(name)
    return name


def quote_ident(name: str) -> str:
    """Validate and double-quote an identifier."""
    return f'"{validate_identifier(name)}"'


def qualified(schema_name: str, table_name: str) -> str:
    """Return a quoted ``"schema"."table"`` reference."""
    return f"{quote_ident(schema_name)}.{quote_ident(table_name)}"


def generate_schema_name(key: str, prefix: str = "tenant_") -> str:
    """Derive a schema name from a tenant key (slug or id).

    Lowercases the key and replaces anything outside ``[a-z0-9_]`` with an
    underscore, e.g. ``"Acme-123"`` -> ``"tenant_acme_123"``.
    """
    if not key:
        raise InvalidIdentifier(key)
    sanitized = _UNSAFE_CHARS.sub("_", str(key).lower())
    return validate_identifier(f"{prefix}{sanitized}")
