"""Concurrent multi-calendar event reads with a partial-success join."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime

from tareai.calendar.models import RemoteEvent
from tareai.calendar.reader import CalendarReader, validate_range
from tareai.core.metrics import calendar_metrics

logger = logging.getLogger(__name__)


def dedupe_events(events: Sequence[RemoteEvent]) -> list[RemoteEvent]:
    """Keep the first occurrence of each event id."""
    seen: set[str] = set()
    unique: list[RemoteEvent] = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


class MultiCalendarAggregator:
    """Fan ``list_events`` out across calendars and merge the survivors.

    A failing calendar is logged and dropped; it never fails the aggregate
    and never cancels its siblings.
    """

    def __init__(self, reader: CalendarReader) -> None:
        self._reader = reader

    async def list_events_across_calendars(
        self,
        calendar_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> list[RemoteEvent]:
        validate_range(start, end)

        ids = list(dict.fromkeys(cid.strip() for cid in calendar_ids if cid and cid.strip()))
        if not ids:
            # Full-account breadth; failures here propagate to the caller.
            calendars = await self._reader.list_calendars()
            ids = list(dict.fromkeys(calendar.id for calendar in calendars))
            if not ids:
                return []

        results = await asyncio.gather(
            *(self._reader.list_events(calendar_id, start, end) for calendar_id in ids),
            return_exceptions=True,
        )

        collected: list[RemoteEvent] = []
        failed = 0
        for calendar_id, result in zip(ids, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failed += 1
                calendar_metrics.record_fetch_failure()
                logger.warning(
                    "Calendar fetch failed, omitting from results: calendar_id=%s error=%s",
                    calendar_id,
                    result,
                )
                continue
            collected.extend(result)

        events = dedupe_events(collected)
        logger.debug(
            "Aggregated %d events from %d/%d calendars",
            len(events),
            len(ids) - failed,
            len(ids),
        )
        return events
