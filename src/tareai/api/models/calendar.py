"""Request/response models for the Google Calendar endpoints."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tareai.calendar.models import RemoteCalendar, RemoteEvent


class CalendarListResponse(BaseModel):
    calendars: list[RemoteCalendar]


class EventListResponse(BaseModel):
    events: list[RemoteEvent]


class FreeBusyRequest(BaseModel):
    """Body of ``POST /freebusy``.

    Times are kept as strings so that malformed values are reported as
    ``INVALID_RANGE`` rather than a schema error.
    """

    model_config = ConfigDict(populate_by_name=True)

    time_min: str | None = Field(default=None, alias="timeMin")
    time_max: str | None = Field(default=None, alias="timeMax")
    calendar_id: str | None = Field(default=None, alias="calendarId")


class BusyWindow(BaseModel):
    start: datetime
    end: datetime


class CalendarBusy(BaseModel):
    busy: list[BusyWindow]


class FreeBusyResponse(BaseModel):
    """Provider-shaped free/busy payload."""

    model_config = ConfigDict(populate_by_name=True)

    time_min: datetime = Field(alias="timeMin")
    time_max: datetime = Field(alias="timeMax")
    calendars: dict[str, CalendarBusy]


class ConnectionStatusResponse(BaseModel):
    connected: bool
    token_expiry: datetime | None = None
    is_expired: bool = False
    connected_since: datetime | None = None


class DisconnectResponse(BaseModel):
    success: bool = True
    deleted: bool
    links_removed: int = 0


class OAuthStartResponse(BaseModel):
    """Authorization URL the user should visit to grant calendar access."""

    authorization_url: str
    state: str


class TaskMutationType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class TaskMutationRequest(BaseModel):
    """Task mutation notification from the task CRUD layer or a datastore webhook."""

    model_config = ConfigDict(extra="ignore")

    type: TaskMutationType
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None


class TaskMutationAccepted(BaseModel):
    accepted: bool = True
    task_id: str
