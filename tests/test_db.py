"""Tests for tareai.db: SSL fallback and pool lifecycle."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tareai.config import DatabaseConfig
from tareai.db import Database, _normalize_ssl_mode, should_retry_with_ssl_disable

pytestmark = pytest.mark.unit


class TestSslMode:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, None),
            ("", None),
            ("  Require ", "require"),
            ("verify-full", "verify-full"),
            ("bogus", None),
        ],
    )
    def test_normalize(self, raw, expected):
        assert _normalize_ssl_mode(raw) == expected

    def test_retry_only_for_connection_lost_without_explicit_ssl(self):
        exc = ConnectionError("unexpected connection_lost() call")

        assert should_retry_with_ssl_disable(exc, None) is True
        assert should_retry_with_ssl_disable(exc, "require") is False
        assert should_retry_with_ssl_disable(ConnectionError("refused"), None) is False


class TestFromConfig:
    def test_from_config(self):
        config = DatabaseConfig(
            name="tareai_x", host="h", port=1234, user="u", password="p", ssl="ALLOW"
        )

        db = Database.from_config(config)

        assert (db.db_name, db.host, db.port, db.user, db.password, db.ssl) == (
            "tareai_x",
            "h",
            1234,
            "u",
            "p",
            "allow",
        )


class TestDatabaseLifecycle:
    async def test_provision_creates_missing_database(self):
        conn = AsyncMock()
        conn.fetchval.return_value = None
        db = Database(db_name='odd"name')

        with patch("tareai.db.asyncpg.connect", AsyncMock(return_value=conn)):
            await db.provision()

        conn.execute.assert_awaited_once_with('CREATE DATABASE "odd""name" TEMPLATE template0')
        conn.close.assert_awaited_once()

    async def test_provision_skips_existing_database(self):
        conn = AsyncMock()
        conn.fetchval.return_value = 1
        db = Database(db_name="tareai")

        with patch("tareai.db.asyncpg.connect", AsyncMock(return_value=conn)):
            await db.provision()

        conn.execute.assert_not_awaited()

    async def test_connect_retries_with_ssl_disable(self):
        pool = MagicMock()
        create_pool = AsyncMock(
            side_effect=[ConnectionError("unexpected connection_lost() call"), pool]
        )
        db = Database(db_name="tareai")

        with patch("tareai.db.asyncpg.create_pool", create_pool):
            assert await db.connect() is pool

        assert create_pool.await_args_list[1].kwargs["ssl"] == "disable"

    async def test_provision_retries_with_ssl_disable(self):
        conn = AsyncMock()
        conn.fetchval.return_value = 1
        connect = AsyncMock(
            side_effect=[ConnectionError("unexpected connection_lost() call"), conn]
        )
        db = Database(db_name="tareai")

        with patch("tareai.db.asyncpg.connect", connect):
            await db.provision()

        assert connect.await_args_list[0].kwargs["database"] == "postgres"
        assert "ssl" not in connect.await_args_list[0].kwargs
        assert connect.await_args_list[1].kwargs["ssl"] == "disable"
        conn.close.assert_awaited_once()

    async def test_explicit_ssl_mode_is_not_retried(self):
        create_pool = AsyncMock(side_effect=ConnectionError("unexpected connection_lost() call"))
        db = Database(db_name="tareai", ssl="require")

        with (
            patch("tareai.db.asyncpg.create_pool", create_pool),
            pytest.raises(ConnectionError),
        ):
            await db.connect()

        create_pool.assert_awaited_once()

    async def test_close_releases_pool(self):
        db = Database(db_name="tareai")
        db.pool = AsyncMock()
        pool = db.pool

        await db.close()

        pool.close.assert_awaited_once()
        assert db.pool is None
