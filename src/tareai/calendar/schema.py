"""DDL for the calendar sync tables."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import asyncpg

TOKENS_TABLE = "google_calendar_tokens"
LINKS_TABLE = "task_google_calendar_sync"

_TOKENS_TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {TOKENS_TABLE} (
    user_id       TEXT PRIMARY KEY,
    access_token  TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    token_expiry  TIMESTAMPTZ NOT NULL,
    scope         TEXT,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_LINKS_TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {LINKS_TABLE} (
    task_id            TEXT PRIMARY KEY,
    user_id            TEXT NOT NULL,
    google_event_id    TEXT NOT NULL,
    google_calendar_id TEXT NOT NULL DEFAULT 'primary',
    last_synced_at     TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_LINKS_USER_INDEX_DDL = f"""
CREATE INDEX IF NOT EXISTS ix_{LINKS_TABLE}_user_id
ON {LINKS_TABLE} (user_id)
"""


async def ensure_calendar_schema(pool: asyncpg.Pool) -> None:
    """Ensure the token and link tables exist on the target database."""
    async with acquire_conn(pool) as conn:
        await conn.execute(_TOKENS_TABLE_DDL)
        await conn.execute(_LINKS_TABLE_DDL)
        await conn.execute(_LINKS_USER_INDEX_DDL)


@asynccontextmanager
async def acquire_conn(pool: asyncpg.Pool) -> AsyncIterator[Any]:
    """Acquire a DB connection, including AsyncMock-friendly test doubles."""
    acquired = pool.acquire()
    if hasattr(acquired, "__aenter__"):
        async with acquired as conn:
            yield conn
        return
    if hasattr(acquired, "__await__"):
        acquired = await acquired
    if hasattr(acquired, "__aenter__"):
        async with acquired as conn:
            yield conn
        return
    yield acquired


def rows_affected(result: str | None) -> int:
    """Parse an asyncpg status string such as ``"DELETE 1"``."""
    if not result:
        return 0
    try:
        return int(result.split()[-1])
    except ValueError:
        return 0
