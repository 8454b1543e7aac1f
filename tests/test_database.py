"""Tests for shared schema remapping and the pool checkout reset."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from src.tenancy.core.database import SharedBase, TenantBase, shared_translate_map


def test_shared_translate_map_uses_setting(settings):
    custom = settings.model_copy(update={"SHARED_SCHEMA": "registry"})
    with patch("src.tenancy.core.database.get_settings", return_value=custom):
        assert shared_translate_map() == {"shared": "registry"}


def test_placeholder_schemas():
    import src.tenancy.models.shared  # noqa: F401
    import src.tenancy.models.tenant  # noqa: F401

    assert SharedBase.metadata.tables["shared.tenants"].schema == "shared"
    assert {table.schema for table in TenantBase.metadata.sorted_tables} == {"tenant"}


def test_checkout_runs_reset_all(settings):
    from src.tenancy.core import database

    with patch.object(database, "_engine", None), patch.object(database, "get_settings", return_value=settings):
        with patch.object(database, "create_async_engine") as create_engine, patch.object(
            database.event, "listens_for"
        ) as listens_for:
            registered = {}

            def decorator_factory(target, name):
                def decorator(fn):
                    registered[name] = fn
                    return fn

                return decorator

            listens_for.side_effect = decorator_factory
            engine = database.get_engine()

        assert engine is create_engine.return_value
        cursor = MagicMock()
        dbapi_conn = MagicMock()
        dbapi_conn.cursor.return_value = cursor
        registered["checkout"](dbapi_conn, None, None)
        cursor.execute.assert_called_once_with("RESET ALL")
        cursor.close.assert_called_once()
