"""Tests for TaskEventLinkStore (task_google_calendar_sync)."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from tareai.calendar.links import TaskEventLinkStore

pytestmark = pytest.mark.unit

_SYNCED = datetime(2026, 5, 1, 10, 0, tzinfo=UTC)


def _make_pool() -> MagicMock:
    conn = AsyncMock()
    cm = AsyncMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire.return_value = cm
    pool._conn = conn
    return pool


def _make_row(**overrides) -> dict:
    row = {
        "task_id": 17,
        "user_id": "user-1",
        "google_event_id": "evt-1",
        "google_calendar_id": "primary",
        "last_synced_at": _SYNCED,
    }
    row.update(overrides)
    return row


class TestGet:
    async def test_maps_columns(self):
        pool = _make_pool()
        pool._conn.fetchrow.return_value = _make_row()

        link = await TaskEventLinkStore(pool).get("17")

        assert link is not None
        assert link.task_id == "17"
        assert link.remote_event_id == "evt-1"
        assert link.calendar_id == "primary"
        assert link.last_synced_at == _SYNCED

    async def test_missing_returns_none(self):
        pool = _make_pool()
        pool._conn.fetchrow.return_value = None

        assert await TaskEventLinkStore(pool).get("17") is None


class TestWrites:
    async def test_upsert_keyed_by_task(self):
        pool = _make_pool()
        pool._conn.fetchrow.return_value = _make_row(google_event_id="evt-2")

        link = await TaskEventLinkStore(pool).upsert(
            task_id="17", user_id="user-1", remote_event_id="evt-2", calendar_id="primary"
        )

        assert link.remote_event_id == "evt-2"
        sql, *args = pool._conn.fetchrow.await_args.args
        assert "ON CONFLICT (task_id) DO UPDATE" in sql
        assert args == ["17", "user-1", "evt-2", "primary"]

    async def test_touch_updates_sync_time(self):
        pool = _make_pool()

        await TaskEventLinkStore(pool).touch("17")

        sql, task_id = pool._conn.execute.await_args.args
        assert "last_synced_at = now()" in sql
        assert task_id == "17"

    async def test_delete_reports_removal(self):
        pool = _make_pool()
        pool._conn.execute.return_value = "DELETE 1"
        assert await TaskEventLinkStore(pool).delete("17") is True

        pool._conn.execute.return_value = "DELETE 0"
        assert await TaskEventLinkStore(pool).delete("17") is False

    async def test_delete_for_user_returns_count(self):
        pool = _make_pool()
        pool._conn.execute.return_value = "DELETE 4"

        assert await TaskEventLinkStore(pool).delete_for_user("user-1") == 4
        assert pool._conn.execute.await_args.args[1] == "user-1"
