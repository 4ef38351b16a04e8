"""Application-level wiring for the calendar sync core.

``CalendarService`` is created once at startup.  It owns the long-lived
pieces (stores, the shared ``httpx.AsyncClient``, the token refresher, the
sync trigger) and builds the request-scoped session/client/reader objects
for each user call.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx

from tareai.calendar.aggregator import MultiCalendarAggregator
from tareai.calendar.client import GoogleCalendarClient
from tareai.calendar.links import TaskEventLinkStore
from tareai.calendar.models import (
    BusyInterval,
    CalendarCredential,
    RemoteCalendar,
    RemoteEvent,
)
from tareai.calendar.oauth import CredentialSession, TokenRefresher
from tareai.calendar.reader import CalendarReader, validate_range
from tareai.calendar.reconciler import TaskEventReconciler
from tareai.calendar.token_store import TokenStore
from tareai.calendar.trigger import SyncTrigger
from tareai.config import AppConfig

logger = logging.getLogger(__name__)


class CalendarService:
    """Entry point used by the HTTP layer and the task mutation hook."""

    def __init__(
        self,
        *,
        tokens: TokenStore,
        links: TaskEventLinkStore,
        http_client: httpx.AsyncClient,
        config: AppConfig,
        refresher: TokenRefresher | None = None,
    ) -> None:
        self.tokens = tokens
        self.links = links
        self.config = config
        self._http_client = http_client
        self.refresher = refresher or TokenRefresher(config.google, http_client)
        self.reconciler = TaskEventReconciler(links, self.client_for, config.calendar)
        self.trigger = SyncTrigger(self.reconciler)

    # ------------------------------------------------------------------
    # Request-scoped construction
    # ------------------------------------------------------------------

    def session_for(self, user_id: str) -> CredentialSession:
        return CredentialSession(user_id, self.tokens, self.refresher)

    def client_for(
        self,
        user_id: str,
        session: CredentialSession | None = None,
    ) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            session or self.session_for(user_id),
            self._http_client,
            timezone=self.config.calendar.timezone,
        )

    def reader_for(self, user_id: str) -> CalendarReader:
        return CalendarReader(self.client_for(user_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_calendars(self, user_id: str) -> list[RemoteCalendar]:
        return await self.reader_for(user_id).list_calendars()

    async def list_events(
        self,
        user_id: str,
        calendar_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> list[RemoteEvent]:
        validate_range(start, end)
        session = self.session_for(user_id)
        # Surface NotConnected before the fan-out swallows per-calendar errors.
        await session.credential()
        reader = CalendarReader(self.client_for(user_id, session))
        return await MultiCalendarAggregator(reader).list_events_across_calendars(
            calendar_ids, start, end
        )

    async def free_busy(
        self,
        user_id: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[BusyInterval]:
        return await self.reader_for(user_id).free_busy(calendar_id, start, end)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, user_id: str, code: str) -> CalendarCredential:
        """Exchange an authorization code and store the resulting credential.

        Raises ``TokenExchangeFailed`` on a failed exchange and ``ValueError``
        when the provider returned no refresh token.
        """
        grant = await self.refresher.exchange_code(code)
        return await self.tokens.save_credential(user_id, grant)

    async def disconnect(self, user_id: str) -> dict[str, Any]:
        deleted = await self.tokens.delete_credential(user_id)
        links_removed = await self.links.delete_for_user(user_id)
        logger.info(
            "Calendar disconnected: user_id=%r credential_deleted=%s links_removed=%d",
            user_id,
            deleted,
            links_removed,
        )
        return {"deleted": deleted, "links_removed": links_removed}

    async def status(self, user_id: str) -> dict[str, Any]:
        credential = await self.tokens.find_credential(user_id)
        if credential is None:
            return {
                "connected": False,
                "token_expiry": None,
                "is_expired": False,
                "connected_since": None,
            }
        return {
            "connected": True,
            "token_expiry": credential.expires_at,
            "is_expired": credential.is_expired(),
            "connected_since": credential.created_at,
        }

    async def shutdown(self, drain_timeout_s: float = 10.0) -> None:
        await self.trigger.drain(timeout_s=drain_timeout_s)
