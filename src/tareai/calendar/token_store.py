"""Per-user OAuth credential storage backed by ``google_calendar_tokens``.

Usage::

    store = TokenStore(pool)
    credential = await store.get_credential(user_id)      # raises NotConnected
    await store.persist_refreshed(user_id, token, expiry)  # after a refresh

Token values are never logged; ``CalendarCredential.__repr__`` redacts them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from tareai.calendar.errors import NotConnected
from tareai.calendar.models import CalendarCredential, TokenGrant
from tareai.calendar.schema import TOKENS_TABLE, acquire_conn, rows_affected

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = (
    "user_id, access_token, refresh_token, token_expiry, scope, created_at, updated_at"
)


def _row_to_credential(row: Any) -> CalendarCredential:
    return CalendarCredential(
        user_id=str(row["user_id"]),
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=row["token_expiry"],
        scope=row["scope"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class TokenStore:
    """Async credential store for the ``google_calendar_tokens`` table.

    Parameters
    ----------
    pool:
        An asyncpg connection pool.  Each operation acquires a connection
        for the duration of the call.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def find_credential(self, user_id: str) -> CalendarCredential | None:
        """Return the user's credential, or ``None`` when not connected."""
        async with acquire_conn(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLUMNS} FROM {TOKENS_TABLE} WHERE user_id = $1",
                user_id,
            )
        if row is None:
            return None
        return _row_to_credential(row)

    async def get_credential(self, user_id: str) -> CalendarCredential:
        """Return the user's credential.

        Raises
        ------
        NotConnected
            If the user has never connected (or has disconnected).
        """
        credential = await self.find_credential(user_id)
        if credential is None:
            raise NotConnected(user_id)
        return credential

    async def save_credential(self, user_id: str, grant: TokenGrant) -> CalendarCredential:
        """Upsert a full credential after a successful authorization-code exchange.

        Raises
        ------
        ValueError
            If the grant carries no refresh token; offline access is required.
        """
        if not grant.refresh_token:
            raise ValueError("token grant has no refresh_token; offline access is required")

        async with acquire_conn(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {TOKENS_TABLE}
                    (user_id, access_token, refresh_token, token_expiry, scope)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id) DO UPDATE SET
                    access_token  = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    token_expiry  = EXCLUDED.token_expiry,
                    scope         = EXCLUDED.scope,
                    updated_at    = now()
                RETURNING {_SELECT_COLUMNS}
                """,
                user_id,
                grant.access_token,
                grant.refresh_token,
                grant.expires_at,
                grant.scope,
            )

        logger.info("Calendar credential stored: user_id=%r scope=%r", user_id, grant.scope)
        return _row_to_credential(row)

    async def persist_refreshed(
        self,
        user_id: str,
        access_token: str,
        expires_at: datetime,
    ) -> None:
        """Overwrite the access token and expiry; the refresh token is untouched."""
        async with acquire_conn(self.pool) as conn:
            result = await conn.execute(
                f"""
                UPDATE {TOKENS_TABLE}
                SET access_token = $2, token_expiry = $3, updated_at = now()
                WHERE user_id = $1
                """,
                user_id,
                access_token,
                expires_at,
            )
        if rows_affected(result) == 0:
            # Disconnected while the refresh was in flight.
            logger.warning("Refreshed token not persisted, credential gone: user_id=%r", user_id)
        else:
            logger.debug("Refreshed access token persisted: user_id=%r", user_id)

    async def delete_credential(self, user_id: str) -> bool:
        """Delete the user's credential. Returns ``True`` if a row was removed."""
        async with acquire_conn(self.pool) as conn:
            result = await conn.execute(
                f"DELETE FROM {TOKENS_TABLE} WHERE user_id = $1",
                user_id,
            )
        deleted = rows_affected(result) > 0
        if deleted:
            logger.info("Calendar credential deleted: user_id=%r", user_id)
        else:
            logger.debug("No calendar credential to delete: user_id=%r", user_id)
        return deleted
