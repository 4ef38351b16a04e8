"""Google Calendar OAuth connect flow.

Implements the two-leg OAuth 2.0 authorization-code flow that links a user's
Google Calendar account:

  1. GET /api/google-calendar/connect
     - Generates a cryptographically random state token (CSRF protection)
       bound to the requesting user, stored in memory with a 10 minute TTL.
     - Redirects to the Google consent URL, or returns it as JSON with
       ``?redirect=false``.

  2. GET /api/google-calendar/callback
     - Validates and consumes the state token.
     - Exchanges the authorization code and stores the credential.
     - Redirects back to the app with a ``google_calendar_connected`` or
       ``google_calendar_error`` query parameter.

Security notes:
  - State tokens are one-time-use and expire after 10 minutes.
  - Token values are never logged or echoed back.
  - Provider error codes are mapped to a fixed vocabulary before being
    reflected into redirect URLs.
"""

from __future__ import annotations

import logging
import secrets
import time
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse, Response

from tareai.api.deps import get_calendar_service, get_current_user_id, get_optional_user_id
from tareai.api.models.calendar import OAuthStartResponse
from tareai.calendar.errors import TokenExchangeFailed
from tareai.calendar.service import CalendarService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google-calendar", tags=["google-calendar-oauth"])

# ---------------------------------------------------------------------------
# CSRF state store
# ---------------------------------------------------------------------------

_STATE_TTL_SECONDS = 600  # 10 minutes

# Maps state token → (user_id, expiry timestamp (monotonic))
# NOTE: process-local; the callback must reach the worker that issued the state.
_state_store: dict[str, tuple[str, float]] = {}


def _generate_state() -> str:
    """Generate a cryptographically random CSRF state token."""
    return secrets.token_urlsafe(32)


def _store_state(state: str, user_id: str) -> None:
    """Store a state token bound to *user_id* with an expiry timestamp."""
    _state_store[state] = (user_id, time.monotonic() + _STATE_TTL_SECONDS)
    _evict_expired_states()


def _validate_and_consume_state(state: str, user_id: str) -> bool:
    """Validate a state token for *user_id* and consume it (one-time-use)."""
    _evict_expired_states()
    entry = _state_store.pop(state, None)
    if entry is None:
        return False
    owner, expiry = entry
    return owner == user_id and time.monotonic() < expiry


def _evict_expired_states() -> None:
    """Remove all expired state tokens from the store."""
    now = time.monotonic()
    expired = [k for k, (_, exp) in _state_store.items() if now >= exp]
    for k in expired:
        del _state_store[k]


def _clear_state_store() -> None:
    """Clear all state entries. Used in tests."""
    _state_store.clear()


# ---------------------------------------------------------------------------
# Error sanitization
# ---------------------------------------------------------------------------

_KNOWN_PROVIDER_ERRORS: dict[str, str] = {
    "access_denied": "The user denied access. OAuth flow cancelled.",
    "invalid_request": "The OAuth request was malformed. Please restart the flow.",
    "unauthorized_client": "This application is not authorized to use Google OAuth.",
    "unsupported_response_type": "Unsupported response type. Please restart the flow.",
    "invalid_scope": "One or more requested OAuth scopes are invalid or not permitted.",
    "server_error": "Google encountered an internal error. Please try again.",
    "temporarily_unavailable": "Google OAuth is temporarily unavailable. Please try again later.",
}


def _sanitize_provider_error(error: str) -> str:
    """Map a provider error code onto the known vocabulary.

    Unknown codes collapse to ``provider_error`` so arbitrary provider text is
    never reflected into a redirect URL.
    """
    normalized = error.strip().lower()
    return normalized if normalized in _KNOWN_PROVIDER_ERRORS else "provider_error"


def _app_redirect(app_url: str, **params: str) -> RedirectResponse:
    return RedirectResponse(url=f"{app_url}/app?{urlencode(params)}", status_code=302)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/connect",
    responses={
        200: {"model": OAuthStartResponse, "description": "JSON payload (redirect=false)"},
        302: {"description": "Redirect to Google authorization URL"},
    },
)
async def connect_start(
    redirect: bool = Query(
        default=True,
        description="If true (default), redirect to Google authorization URL. "
        "If false, return the URL as JSON for programmatic callers.",
    ),
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> Response:
    """Begin the Google Calendar OAuth authorization flow."""
    if not service.config.google.configured:
        raise HTTPException(status_code=503, detail="Google OAuth credentials not configured")

    state = _generate_state()
    _store_state(state, user_id)
    authorization_url = service.refresher.authorization_url(state)

    logger.info("Google Calendar connect started (state=%s...)", state[:8])

    if redirect:
        return RedirectResponse(url=authorization_url, status_code=302)

    return JSONResponse(
        content=OAuthStartResponse(authorization_url=authorization_url, state=state).model_dump()
    )


@router.get("/callback")
async def connect_callback(
    code: str | None = Query(default=None, description="Authorization code from Google."),
    state: str | None = Query(default=None, description="CSRF state token."),
    error: str | None = Query(default=None, description="OAuth error code from Google."),
    user_id: str | None = Depends(get_optional_user_id),
    service: CalendarService = Depends(get_calendar_service),
) -> Response:
    """Handle the Google OAuth callback and redirect back into the app."""
    app_url = service.config.app_url

    if user_id is None:
        return RedirectResponse(url=f"{app_url}/login?redirect=/app", status_code=302)

    if error:
        sanitized = _sanitize_provider_error(error)
        logger.warning("Google OAuth provider error: %s", sanitized)
        # Consume the state so a denied flow cannot be replayed.
        if state:
            _validate_and_consume_state(state, user_id)
        return _app_redirect(app_url, google_calendar_error=sanitized)

    if not code:
        return _app_redirect(app_url, google_calendar_error="no_code")

    if not state or not _validate_and_consume_state(state, user_id):
        logger.warning("OAuth callback received invalid or expired state token")
        return _app_redirect(app_url, google_calendar_error="invalid_state")

    try:
        await service.connect(user_id, code)
    except TokenExchangeFailed as exc:
        logger.warning("Google OAuth token exchange failed: %s", exc)
        return _app_redirect(app_url, google_calendar_error="callback_failed")
    except ValueError:
        logger.warning("Google OAuth token response did not include a refresh token")
        return _app_redirect(app_url, google_calendar_error="callback_failed")
    except Exception:
        logger.error("Failed to persist Google Calendar credential", exc_info=True)
        return _app_redirect(app_url, google_calendar_error="callback_failed")

    logger.info("Google Calendar connected")
    return _app_redirect(app_url, google_calendar_connected="true")
