"""Authenticated Google Calendar API v3 client for one user.

Covers the six remote operations the sync core needs: ``calendarList.list``,
``events.list``, ``freeBusy.query``, ``events.insert``, ``events.patch`` and
``events.delete``.  Bearer tokens come from a
:class:`~tareai.calendar.oauth.CredentialSession`; a 401 forces one refresh
and one retry, and 429/503 responses are retried with exponential backoff.

Errors:

- non-2xx responses raise :class:`CalendarRequestError` (sanitized message)
- transport failures and malformed payloads raise :class:`CalendarUnavailable`
- ``NotConnected`` / ``RefreshFailed`` from the session propagate unchanged
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from tareai.calendar.errors import (
    CalendarRequestError,
    CalendarUnavailable,
    safe_google_error_message,
)
from tareai.calendar.models import (
    DEFAULT_CALENDAR_COLOR,
    DEFAULT_CALENDAR_SUMMARY,
    BusyInterval,
    RemoteCalendar,
    RemoteEvent,
)
from tareai.calendar.oauth import CredentialSession

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

# Retry on 429 Too Many Requests and 503 Service Unavailable with exponential backoff.
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0

EVENTS_PAGE_SIZE = 250


def google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _coerce_zoneinfo(timezone: str) -> ZoneInfo | Any:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def _parse_event_boundary(
    payload: dict[str, Any],
    *,
    fallback_timezone: str,
) -> tuple[datetime, bool]:
    """Return ``(datetime, all_day)`` for an event ``start``/``end`` object."""
    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return parse_google_datetime(date_time), False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value)
        except ValueError as exc:
            raise ValueError(
                f"Google Calendar returned an invalid date value: {date_value}"
            ) from exc
        timezone_raw = payload.get("timeZone")
        timezone = (
            timezone_raw.strip()
            if isinstance(timezone_raw, str) and timezone_raw.strip()
            else fallback_timezone
        )
        tzinfo = _coerce_zoneinfo(timezone)
        return (
            datetime(parsed_date.year, parsed_date.month, parsed_date.day, tzinfo=tzinfo),
            True,
        )

    raise ValueError("Google Calendar event is missing start/end dateTime or date values")


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def google_event_to_remote_event(
    payload: dict[str, Any],
    *,
    calendar_id: str,
    fallback_timezone: str,
) -> RemoteEvent | None:
    """Map an ``events`` resource to a :class:`RemoteEvent`; ``None`` if unusable."""
    event_id = _optional_text(payload.get("id"))
    start_payload = payload.get("start")
    end_payload = payload.get("end")
    if event_id is None or not isinstance(start_payload, dict) or not isinstance(end_payload, dict):
        return None

    try:
        start, all_day = _parse_event_boundary(start_payload, fallback_timezone=fallback_timezone)
        end, _ = _parse_event_boundary(end_payload, fallback_timezone=fallback_timezone)
    except ValueError:
        logger.debug("Skipping event with unparseable boundaries: calendar_id=%s", calendar_id)
        return None

    return RemoteEvent(
        id=event_id,
        calendar_id=calendar_id,
        start=start,
        end=end,
        title=_optional_text(payload.get("summary")) or "",
        description=_optional_text(payload.get("description")),
        all_day=all_day,
        html_link=_optional_text(payload.get("htmlLink")),
        status=_optional_text(payload.get("status")),
    )


def google_calendar_entry_to_remote_calendar(payload: dict[str, Any]) -> RemoteCalendar:
    return RemoteCalendar(
        id=_optional_text(payload.get("id")) or "primary",
        summary=_optional_text(payload.get("summary")) or DEFAULT_CALENDAR_SUMMARY,
        primary=bool(payload.get("primary")),
        background_color=_optional_text(payload.get("backgroundColor")) or DEFAULT_CALENDAR_COLOR,
    )


class GoogleCalendarClient:
    """Google Calendar API client bound to one user's :class:`CredentialSession`."""

    def __init__(
        self,
        session: CredentialSession,
        http_client: httpx.AsyncClient,
        *,
        timezone: str = "UTC",
    ) -> None:
        self._session = session
        self._http_client = http_client
        self._timezone = timezone

    @property
    def session(self) -> CredentialSession:
        return self._session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_calendars(self) -> list[RemoteCalendar]:
        calendars: list[RemoteCalendar] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"minAccessRole": "reader"}
            if page_token:
                params["pageToken"] = page_token
            payload = await self._request_google_json(
                "GET", "/users/me/calendarList", params=params
            )
            items = payload.get("items", [])
            if not isinstance(items, list):
                raise CalendarUnavailable("Google Calendar calendarList response has invalid items")
            calendars.extend(
                google_calendar_entry_to_remote_calendar(item)
                for item in items
                if isinstance(item, dict)
            )
            page_token = _optional_text(payload.get("nextPageToken"))
            if page_token is None:
                return calendars

    async def list_events(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[RemoteEvent]:
        """List single event instances in ``[start, end)`` ordered by start time."""
        encoded_calendar_id = quote(calendar_id, safe="")
        events: list[RemoteEvent] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "timeMin": google_rfc3339(start),
                "timeMax": google_rfc3339(end),
                "singleEvents": "true",
                "showDeleted": "false",
                "orderBy": "startTime",
                "maxResults": EVENTS_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token
            payload = await self._request_google_json(
                "GET",
                f"/calendars/{encoded_calendar_id}/events",
                params=params,
            )
            items = payload.get("items", [])
            if not isinstance(items, list):
                raise CalendarUnavailable("Google Calendar events response has invalid items")
            for item in items:
                if not isinstance(item, dict):
                    continue
                event = google_event_to_remote_event(
                    item,
                    calendar_id=calendar_id,
                    fallback_timezone=self._timezone,
                )
                if event is not None:
                    events.append(event)
            page_token = _optional_text(payload.get("nextPageToken"))
            if page_token is None:
                return events

    async def free_busy(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[BusyInterval]:
        payload = await self._request_google_json(
            "POST",
            "/freeBusy",
            json_body={
                "timeMin": google_rfc3339(start),
                "timeMax": google_rfc3339(end),
                "items": [{"id": calendar_id}],
            },
        )
        calendars_payload = payload.get("calendars")
        if not isinstance(calendars_payload, dict):
            raise CalendarUnavailable("Google Calendar freeBusy response missing calendars object")

        calendar_payload = calendars_payload.get(calendar_id)
        if not isinstance(calendar_payload, dict):
            if len(calendars_payload) == 1:
                calendar_payload = next(iter(calendars_payload.values()))
            else:
                raise CalendarUnavailable(
                    "Google Calendar freeBusy response missing calendar entry for requested id"
                )
        if not isinstance(calendar_payload, dict):
            raise CalendarUnavailable("Google Calendar freeBusy response calendar entry is invalid")

        errors = calendar_payload.get("errors")
        if isinstance(errors, list) and errors:
            reasons = ", ".join(
                str(err.get("reason", "unknown")) for err in errors if isinstance(err, dict)
            )
            raise CalendarUnavailable(f"Google Calendar freeBusy failed for calendar: {reasons}")

        busy_payload = calendar_payload.get("busy", [])
        if not isinstance(busy_payload, list):
            raise CalendarUnavailable("Google Calendar freeBusy response missing busy array")

        intervals: list[BusyInterval] = []
        for window in busy_payload:
            if not isinstance(window, dict):
                continue
            start_raw = window.get("start")
            end_raw = window.get("end")
            if not isinstance(start_raw, str) or not isinstance(end_raw, str):
                raise CalendarUnavailable(
                    "Google Calendar freeBusy busy windows must include start/end"
                )
            try:
                busy_start = parse_google_datetime(start_raw)
                busy_end = parse_google_datetime(end_raw)
            except ValueError as exc:
                raise CalendarUnavailable(str(exc)) from exc
            if busy_end <= busy_start:
                continue
            intervals.append(BusyInterval(start=busy_start, end=busy_end))
        return intervals

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_event(self, calendar_id: str, body: dict[str, Any]) -> str:
        """Insert an event and return its provider id."""
        encoded_calendar_id = quote(calendar_id, safe="")
        payload = await self._request_google_json(
            "POST",
            f"/calendars/{encoded_calendar_id}/events",
            json_body=body,
        )
        event_id = _optional_text(payload.get("id"))
        if event_id is None:
            raise CalendarUnavailable("Google Calendar insert response is missing an event id")
        return event_id

    async def patch_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> str:
        """Patch an existing event. 404/410 surface as ``CalendarRequestError``."""
        encoded_calendar_id = quote(calendar_id, safe="")
        encoded_event_id = quote(event_id, safe="")
        payload = await self._request_google_json(
            "PATCH",
            f"/calendars/{encoded_calendar_id}/events/{encoded_event_id}",
            json_body=body,
        )
        return _optional_text(payload.get("id")) or event_id

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event.

        Returns ``True`` when the provider deleted it and ``False`` when it
        was already gone (404/410); both count as success.
        """
        encoded_calendar_id = quote(calendar_id, safe="")
        encoded_event_id = quote(event_id, safe="")
        response = await self._request_with_bearer(
            method="DELETE",
            path=f"/calendars/{encoded_calendar_id}/events/{encoded_event_id}",
        )

        if response.status_code in (404, 410):
            logger.debug(
                "delete_event: event %r already gone (status=%d); treating as success",
                event_id,
                response.status_code,
            )
            return False

        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarRequestError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )
        return True

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request_google_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._request_with_bearer(
            method=method,
            path=path,
            params=params,
            json_body=json_body,
        )

        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarRequestError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )

        if response.status_code == 204:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarUnavailable(
                "Google Calendar API returned invalid JSON for a successful response"
            ) from exc

        if not isinstance(payload, dict):
            raise CalendarUnavailable("Google Calendar API returned an unexpected JSON payload")
        return payload

    async def _request_with_bearer(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}{normalized_path}"

        response = await self._request_once(
            method=method,
            url=url,
            params=params,
            json_body=json_body,
            force_refresh=False,
        )

        if response.status_code == 401 and not self._session.refreshed:
            response = await self._request_once(
                method=method,
                url=url,
                params=params,
                json_body=json_body,
                force_refresh=True,
            )

        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(
                method=method,
                url=url,
                params=params,
                json_body=json_body,
                force_refresh=False,
            )
            retry += 1

        return response

    async def _request_once(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = await self._session.access_token(force_refresh=force_refresh)
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise CalendarUnavailable(
                f"Google Calendar request failed: {type(exc).__name__}"
            ) from exc
