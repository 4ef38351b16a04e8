"""Persisted task to remote-event cross-references (``task_google_calendar_sync``)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from tareai.calendar.models import TaskEventLink
from tareai.calendar.schema import LINKS_TABLE, acquire_conn, rows_affected

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = "task_id, user_id, google_event_id, google_calendar_id, last_synced_at"


def _row_to_link(row: Any) -> TaskEventLink:
    return TaskEventLink(
        task_id=str(row["task_id"]),
        user_id=str(row["user_id"]),
        remote_event_id=row["google_event_id"],
        calendar_id=row["google_calendar_id"],
        last_synced_at=row["last_synced_at"],
    )


class TaskEventLinkStore:
    """At most one link per task; writes are upserts keyed by ``task_id``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, task_id: str) -> TaskEventLink | None:
        async with acquire_conn(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLUMNS} FROM {LINKS_TABLE} WHERE task_id = $1",
                task_id,
            )
        return None if row is None else _row_to_link(row)

    async def upsert(
        self,
        *,
        task_id: str,
        user_id: str,
        remote_event_id: str,
        calendar_id: str,
    ) -> TaskEventLink:
        """Insert a link or replace the existing one for ``task_id``."""
        async with acquire_conn(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {LINKS_TABLE}
                    (task_id, user_id, google_event_id, google_calendar_id, last_synced_at)
                VALUES ($1, $2, $3, $4, now())
                ON CONFLICT (task_id) DO UPDATE SET
                    user_id            = EXCLUDED.user_id,
                    google_event_id    = EXCLUDED.google_event_id,
                    google_calendar_id = EXCLUDED.google_calendar_id,
                    last_synced_at     = now()
                RETURNING {_SELECT_COLUMNS}
                """,
                task_id,
                user_id,
                remote_event_id,
                calendar_id,
            )
        return _row_to_link(row)

    async def touch(self, task_id: str) -> None:
        """Refresh ``last_synced_at`` after a successful update."""
        async with acquire_conn(self.pool) as conn:
            await conn.execute(
                f"UPDATE {LINKS_TABLE} SET last_synced_at = now() WHERE task_id = $1",
                task_id,
            )

    async def delete(self, task_id: str) -> bool:
        async with acquire_conn(self.pool) as conn:
            result = await conn.execute(
                f"DELETE FROM {LINKS_TABLE} WHERE task_id = $1",
                task_id,
            )
        return rows_affected(result) > 0

    async def delete_for_user(self, user_id: str) -> int:
        """Remove every link owned by ``user_id`` (disconnect). Returns the row count."""
        async with acquire_conn(self.pool) as conn:
            result = await conn.execute(
                f"DELETE FROM {LINKS_TABLE} WHERE user_id = $1",
                user_id,
            )
        removed = rows_affected(result)
        if removed:
            logger.info("Removed %d task/event links: user_id=%r", removed, user_id)
        return removed
