"""Error taxonomy for calendar sync.

Read-path errors are mapped to HTTP responses by :mod:`tareai.api.middleware`;
write-path errors stop at the :class:`~tareai.calendar.trigger.SyncTrigger`
boundary and are only logged.
"""

from __future__ import annotations

import re

import httpx


class CalendarSyncError(RuntimeError):
    """Base error raised by the calendar sync core."""


class NotConnected(CalendarSyncError):
    """Raised when the user has no calendar credential on file."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Google Calendar is not connected for user {user_id!r}")


class InvalidRange(CalendarSyncError, ValueError):
    """Raised when a time window is malformed or inverted."""


class CalendarUnavailable(CalendarSyncError):
    """Raised when the provider cannot be reached or rejects auth after one refresh."""


class RefreshFailed(CalendarSyncError):
    """Raised when a refresh-token exchange is rejected or cannot be completed."""


class TokenExchangeFailed(CalendarSyncError):
    """Raised when the authorization-code exchange fails."""


class SyncFailed(CalendarSyncError):
    """Raised when the provider rejects a reconciliation for a reason other than not-found."""


class CalendarRequestError(CalendarSyncError):
    """Raised when a Google Calendar API request returns a non-success status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")

    @property
    def not_found(self) -> bool:
        return self.status_code in (404, 410)


_MAX_ERROR_MESSAGE_LENGTH = 200


def redact_credential_values(message: str) -> str:
    """Redact token and secret values from an error message."""
    redacted = message
    # key=value style pairs
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token|code)\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    # JSON/Python dict style quoted values
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    # Authorization headers
    redacted = re.sub(r"(?i)\bBearer\s+[^\s,;]+", "Bearer [REDACTED]", redacted)
    return redacted


def sanitize_message(message: str) -> str:
    """Redact, collapse whitespace and truncate a message for logs and exceptions."""
    return " ".join(redact_credential_values(message).split())[:_MAX_ERROR_MESSAGE_LENGTH]


def safe_google_error_message(response: httpx.Response) -> str:
    """Extract a short, credential-free error message from a Google response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return sanitize_message(message)
        if isinstance(error_payload, str) and error_payload.strip():
            description = payload.get("error_description")
            if isinstance(description, str) and description.strip():
                return sanitize_message(f"{error_payload}: {description}")
            return sanitize_message(error_payload)

    raw_text = response.text.strip()
    if raw_text:
        return sanitize_message(raw_text)
    return "Request failed without an error payload"
