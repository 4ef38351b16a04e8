"""Google Calendar sync: tokens, reads, aggregation and task reconciliation."""

from tareai.calendar.errors import (
    CalendarRequestError,
    CalendarSyncError,
    CalendarUnavailable,
    InvalidRange,
    NotConnected,
    RefreshFailed,
    SyncFailed,
    TokenExchangeFailed,
)
from tareai.calendar.service import CalendarService

__all__ = [
    "CalendarRequestError",
    "CalendarService",
    "CalendarSyncError",
    "CalendarUnavailable",
    "InvalidRange",
    "NotConnected",
    "RefreshFailed",
    "SyncFailed",
    "TokenExchangeFailed",
]
