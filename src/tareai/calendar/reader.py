"""Read operations with range validation and error mapping."""

from __future__ import annotations

import logging
from datetime import datetime

from tareai.calendar.client import GoogleCalendarClient
from tareai.calendar.errors import (
    CalendarRequestError,
    CalendarUnavailable,
    InvalidRange,
    RefreshFailed,
)
from tareai.calendar.models import BusyInterval, RemoteCalendar, RemoteEvent

logger = logging.getLogger(__name__)


def validate_range(start: datetime, end: datetime) -> None:
    """Raise :class:`InvalidRange` unless ``start < end`` with comparable datetimes."""
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        raise InvalidRange("start and end must be datetimes")
    if (start.tzinfo is None) != (end.tzinfo is None):
        raise InvalidRange("start and end must both be timezone-aware or both naive")
    if start >= end:
        raise InvalidRange(
            f"start must be before end (start={start.isoformat()}, end={end.isoformat()})"
        )


class CalendarReader:
    """Provider reads for one user.

    ``NotConnected`` propagates as-is; provider rejections, transport
    failures and refresh failures surface as :class:`CalendarUnavailable`
    with the original error chained.
    """

    def __init__(self, client: GoogleCalendarClient) -> None:
        self._client = client

    async def list_calendars(self) -> list[RemoteCalendar]:
        try:
            return await self._client.list_calendars()
        except (CalendarRequestError, RefreshFailed) as exc:
            raise CalendarUnavailable(f"Could not list calendars: {exc}") from exc

    async def list_events(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[RemoteEvent]:
        validate_range(start, end)
        try:
            return await self._client.list_events(calendar_id, start, end)
        except (CalendarRequestError, RefreshFailed) as exc:
            raise CalendarUnavailable(
                f"Could not list events for calendar {calendar_id!r}: {exc}"
            ) from exc

    async def free_busy(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[BusyInterval]:
        validate_range(start, end)
        try:
            return await self._client.free_busy(calendar_id, start, end)
        except (CalendarRequestError, RefreshFailed) as exc:
            raise CalendarUnavailable(
                f"Could not query free/busy for calendar {calendar_id!r}: {exc}"
            ) from exc
