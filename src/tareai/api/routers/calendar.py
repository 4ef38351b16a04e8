"""Google Calendar read, status and task-mutation endpoints.

All routes require the ``X-User-Id`` header set by the auth gateway, except
that datastore webhooks may post task mutations with the shared
``X-Webhook-Secret`` header instead.

  GET    /api/google-calendar/calendars        calendars visible to the account
  GET    /api/google-calendar/events           events across calendars in a window
  POST   /api/google-calendar/freebusy         busy windows for one calendar
  GET    /api/google-calendar/status           connection status
  DELETE /api/google-calendar/connection       disconnect (credential + links)
  POST   /api/google-calendar/task-mutations   fire-and-forget task reconciliation
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import ValidationError

from tareai.api.deps import get_calendar_service, get_current_user_id, get_optional_user_id
from tareai.api.models.calendar import (
    BusyWindow,
    CalendarBusy,
    CalendarListResponse,
    ConnectionStatusResponse,
    DisconnectResponse,
    EventListResponse,
    FreeBusyRequest,
    FreeBusyResponse,
    TaskMutationAccepted,
    TaskMutationRequest,
    TaskMutationType,
)
from tareai.calendar.errors import InvalidRange
from tareai.calendar.models import TaskSnapshot
from tareai.calendar.service import CalendarService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google-calendar", tags=["google-calendar"])

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


def parse_time_param(name: str, value: str | None) -> datetime:
    """Parse an RFC 3339 query/body value; naive values are taken as UTC."""
    if value is None or not value.strip():
        raise InvalidRange(f"{name} is required")
    # A literal '+' in an unencoded query string arrives as a space.
    normalized = value.strip().replace(" ", "+")
    if normalized.endswith(("Z", "z")):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise InvalidRange(f"{name} is not a valid RFC 3339 timestamp: {value!r}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


@router.get("/calendars", response_model=CalendarListResponse)
async def list_calendars(
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> CalendarListResponse:
    calendars = await service.list_calendars(user_id)
    return CalendarListResponse(calendars=calendars)


@router.get("/events", response_model=EventListResponse)
async def list_events(
    time_min: str | None = Query(default=None, alias="timeMin"),
    time_max: str | None = Query(default=None, alias="timeMax"),
    calendar_ids: list[str] | None = Query(
        default=None,
        alias="calendarId",
        description="Repeatable; all calendars of the account when omitted.",
    ),
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> EventListResponse:
    start = parse_time_param("timeMin", time_min)
    end = parse_time_param("timeMax", time_max)
    events = await service.list_events(user_id, calendar_ids or [], start, end)
    return EventListResponse(events=events)


@router.post("/freebusy", response_model=FreeBusyResponse)
async def free_busy(
    body: FreeBusyRequest,
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> FreeBusyResponse:
    start = parse_time_param("timeMin", body.time_min)
    end = parse_time_param("timeMax", body.time_max)
    calendar_id = (body.calendar_id or "").strip() or "primary"
    intervals = await service.free_busy(user_id, calendar_id, start, end)
    return FreeBusyResponse(
        time_min=start,
        time_max=end,
        calendars={
            calendar_id: CalendarBusy(
                busy=[BusyWindow(start=i.start, end=i.end) for i in intervals]
            )
        },
    )


@router.get("/status", response_model=ConnectionStatusResponse)
async def connection_status(
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> ConnectionStatusResponse:
    return ConnectionStatusResponse(**await service.status(user_id))


@router.delete("/connection", response_model=DisconnectResponse)
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> DisconnectResponse:
    result = await service.disconnect(user_id)
    return DisconnectResponse(deleted=result["deleted"], links_removed=result["links_removed"])


def _owner_from_records(*records: dict[str, Any] | None) -> str | None:
    for record in records:
        if not record:
            continue
        for key in ("user_id", "userId"):
            value = record.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
    return None


def _webhook_authorized(expected: str, presented: str | None) -> bool:
    if not expected or presented is None:
        return False
    return secrets.compare_digest(presented.encode(), expected.encode())


def _snapshot(record: dict[str, Any] | None) -> TaskSnapshot | None:
    if not record:
        return None
    return TaskSnapshot.model_validate(record)


@router.post("/task-mutations", status_code=202, response_model=TaskMutationAccepted)
async def task_mutation(
    body: TaskMutationRequest,
    header_user_id: str | None = Depends(get_optional_user_id),
    webhook_secret: str | None = Header(default=None, alias=WEBHOOK_SECRET_HEADER),
    service: CalendarService = Depends(get_calendar_service),
) -> TaskMutationAccepted:
    """Submit one background reconciliation and acknowledge immediately.

    The owning user comes from the gateway header. Without it, the ``user_id``
    column of the task record is trusted only when the request carries the
    configured webhook secret.
    """
    user_id = header_user_id
    if user_id is None and _webhook_authorized(service.config.webhook_secret, webhook_secret):
        user_id = _owner_from_records(body.record, body.old_record)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        after = _snapshot(body.record) if body.type is not TaskMutationType.DELETE else None
        before = _snapshot(body.old_record)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid task record: {exc.errors()}") from exc

    if body.type is TaskMutationType.DELETE:
        before = before or _snapshot(body.record)
        if before is None:
            raise HTTPException(status_code=400, detail="DELETE requires old_record")
        service.trigger.task_deleted(user_id, before)
        task_id = before.id
    elif after is None:
        raise HTTPException(status_code=400, detail=f"{body.type.value} requires record")
    elif body.type is TaskMutationType.INSERT:
        service.trigger.task_created(user_id, after)
        task_id = after.id
    else:
        service.trigger.task_updated(user_id, before, after)
        task_id = after.id

    logger.debug("Task mutation accepted: type=%s task_id=%s", body.type.value, task_id)
    return TaskMutationAccepted(task_id=task_id)
