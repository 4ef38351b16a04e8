"""API error handling middleware with consistent error responses.

Registers FastAPI exception handlers that convert calendar sync exceptions
into standardised ``{"error": {"code": "...", "message": "..."}}`` JSON
responses.

Status code mapping:
- ``NotConnected`` → 404 ``CALENDAR_NOT_CONNECTED``
- ``InvalidRange`` → 400 ``INVALID_RANGE``
- ``CalendarUnavailable`` → 502 ``CALENDAR_UNAVAILABLE`` (``CALENDAR_REFRESH_FAILED``
  when caused by a rejected refresh)
- ``RefreshFailed`` → 502 ``CALENDAR_REFRESH_FAILED``
- Any other ``Exception`` → 500 ``INTERNAL_ERROR``
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tareai.api.models import ErrorDetail, ErrorResponse
from tareai.calendar.errors import (
    CalendarUnavailable,
    InvalidRange,
    NotConnected,
    RefreshFailed,
    sanitize_message,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_not_connected(request: Request, exc: NotConnected) -> JSONResponse:
    """Return 404 when the user has no calendar credential."""
    logger.info("Calendar not connected: %s %s", request.method, request.url.path)
    return _error(404, "CALENDAR_NOT_CONNECTED", "Google Calendar not connected")


async def _handle_invalid_range(request: Request, exc: InvalidRange) -> JSONResponse:
    logger.info("Invalid time range: %s", exc)
    return _error(400, "INVALID_RANGE", str(exc))


async def _handle_calendar_unavailable(
    request: Request,
    exc: CalendarUnavailable,
) -> JSONResponse:
    """Return 502 when the provider cannot serve the read."""
    logger.warning("Calendar unavailable: %s", sanitize_message(str(exc)))
    if isinstance(exc.__cause__, RefreshFailed):
        return _error(
            502,
            "CALENDAR_REFRESH_FAILED",
            "Google Calendar access was revoked or expired; reconnect the calendar",
        )
    return _error(502, "CALENDAR_UNAVAILABLE", "Google Calendar is temporarily unavailable")


async def _handle_refresh_failed(request: Request, exc: RefreshFailed) -> JSONResponse:
    logger.warning("Calendar token refresh failed: %s", sanitize_message(str(exc)))
    return _error(
        502,
        "CALENDAR_REFRESH_FAILED",
        "Google Calendar access was revoked or expired; reconnect the calendar",
    )


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    Sits above the Starlette exception handler layer so that exceptions not
    caught by ``add_exception_handler`` still get the standard envelope.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return _error(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Call this from ``create_app()`` after constructing the ``FastAPI`` instance.
    """
    app.add_exception_handler(NotConnected, _handle_not_connected)  # type: ignore[arg-type]
    app.add_exception_handler(InvalidRange, _handle_invalid_range)  # type: ignore[arg-type]
    app.add_exception_handler(
        CalendarUnavailable, _handle_calendar_unavailable  # type: ignore[arg-type]
    )
    app.add_exception_handler(RefreshFailed, _handle_refresh_failed)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
