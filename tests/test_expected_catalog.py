"""The expected catalog and the SQLAlchemy tenant models must describe the same schema."""

from __future__ import annotations

import pytest

from src.tenancy.models.tenant import MIGRATION_LEDGER_TABLE, TENANT_TABLES
from src.tenancy.schemas.expected import (
    CATALOG_VERSION,
    EXPECTED_TABLES,
    FOREIGN_KEYS,
    TENANT_INDEXES,
    UNIQUE_GROUPS,
    is_compatible_type,
)
from src.tenancy.services.migrations import DEFAULT_UNITS, HEAD_VERSION

from tests.conftest import information_schema_type

MODEL_TABLES = {table.name: table for table in TENANT_TABLES}


def test_catalog_version_matches_migrations():
    assert CATALOG_VERSION == HEAD_VERSION
    assert [unit.version for unit in DEFAULT_UNITS] == list(range(1, HEAD_VERSION + 1))


def test_models_cover_every_expected_table():
    assert set(MODEL_TABLES) == set(EXPECTED_TABLES)
    assert MIGRATION_LEDGER_TABLE.name not in MODEL_TABLES


@pytest.mark.parametrize("table_name", sorted(EXPECTED_TABLES))
def test_model_columns_match(table_name):
    table = MODEL_TABLES[table_name]
    expected = {spec.name: spec for spec in EXPECTED_TABLES[table_name]}

    assert [column.name for column in table.columns] == list(expected)
    for column in table.columns:
        spec = expected[column.name]
        assert information_schema_type(column.type) == spec.type, column.name
        assert bool(column.nullable) == spec.nullable, column.name


def test_tables_sorted_parents_first():
    order = [table.name for table in TENANT_TABLES]
    for rule in FOREIGN_KEYS:
        assert order.index(rule.reference_table) < order.index(rule.table)


def test_indexes_reference_real_columns():
    for index in TENANT_INDEXES:
        columns = {spec.name for spec in EXPECTED_TABLES[index.table]}
        assert set(index.columns) <= columns, index.name


def test_unique_groups_reference_real_columns():
    for rule in UNIQUE_GROUPS:
        columns = {spec.name for spec in EXPECTED_TABLES[rule.table]}
        assert set(rule.columns) <= columns, rule.description


class TestCompatibleTypes:
    def test_same_type(self):
        assert is_compatible_type("bigint", "bigint")

    def test_widened_integer(self):
        assert is_compatible_type("integer", "bigint")

    def test_jsonb_for_json(self):
        assert is_compatible_type("jsonb", "json")

    def test_incompatible(self):
        assert not is_compatible_type("text", "bigint")

    def test_unknown_expected_type_needs_exact_match(self):
        assert is_compatible_type("uuid", "uuid")
        assert not is_compatible_type("text", "uuid")
