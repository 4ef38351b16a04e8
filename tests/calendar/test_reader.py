"""Tests for CalendarReader and range validation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from tareai.calendar.errors import (
    CalendarRequestError,
    CalendarUnavailable,
    InvalidRange,
    NotConnected,
    RefreshFailed,
)
from tareai.calendar.models import BusyInterval, RemoteEvent
from tareai.calendar.reader import CalendarReader, validate_range

pytestmark = pytest.mark.unit

_START = datetime(2026, 3, 2, tzinfo=UTC)
_END = _START + timedelta(days=7)


def _event(event_id: str, calendar_id: str = "primary", hour: int = 9) -> RemoteEvent:
    start = _START.replace(hour=hour)
    return RemoteEvent(
        id=event_id,
        calendar_id=calendar_id,
        start=start,
        end=start + timedelta(hours=1),
        title=event_id,
    )


def _make_client() -> MagicMock:
    client = MagicMock()
    client.list_calendars = AsyncMock(return_value=[])
    client.list_events = AsyncMock(return_value=[])
    client.free_busy = AsyncMock(return_value=[])
    return client


# ---------------------------------------------------------------------------
# validate_range
# ---------------------------------------------------------------------------


class TestValidateRange:
    def test_accepts_ordered_window(self):
        validate_range(_START, _END)

    @pytest.mark.parametrize(
        ("start", "end"),
        [
            (_END, _START),
            (_START, _START),
            (_START, datetime(2026, 3, 9)),
            ("2026-03-02", _END),
        ],
    )
    def test_rejects_invalid_windows(self, start, end):
        with pytest.raises(InvalidRange):
            validate_range(start, end)

    def test_invalid_range_is_a_value_error(self):
        assert issubclass(InvalidRange, ValueError)


# ---------------------------------------------------------------------------
# CalendarReader
# ---------------------------------------------------------------------------


class TestCalendarReader:
    async def test_invalid_range_checked_before_any_call(self):
        client = _make_client()
        reader = CalendarReader(client)

        with pytest.raises(InvalidRange):
            await reader.list_events("primary", _END, _START)
        with pytest.raises(InvalidRange):
            await reader.free_busy("primary", _START, _START)

        client.list_events.assert_not_awaited()
        client.free_busy.assert_not_awaited()

    async def test_passes_results_through(self):
        client = _make_client()
        client.list_events.return_value = [_event("a")]
        client.free_busy.return_value = [BusyInterval(start=_START, end=_END)]
        reader = CalendarReader(client)

        assert [e.id for e in await reader.list_events("primary", _START, _END)] == ["a"]
        assert len(await reader.free_busy("primary", _START, _END)) == 1

    @pytest.mark.parametrize(
        "error",
        [
            CalendarRequestError(status_code=500, message="Backend Error"),
            RefreshFailed("invalid_grant"),
        ],
    )
    async def test_provider_failures_become_unavailable(self, error):
        client = _make_client()
        client.list_events.side_effect = error

        with pytest.raises(CalendarUnavailable) as exc_info:
            await CalendarReader(client).list_events("primary", _START, _END)

        assert exc_info.value.__cause__ is error

    async def test_not_connected_propagates(self):
        client = _make_client()
        client.list_calendars.side_effect = NotConnected("user-1")

        with pytest.raises(NotConnected):
            await CalendarReader(client).list_calendars()
