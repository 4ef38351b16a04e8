"""OAuth2 exchanges against the Google token endpoint and per-request token policy.

``TokenRefresher`` is stateless: it performs refresh-token and
authorization-code exchanges and builds the consent URL.

``CredentialSession`` is created per request for one user.  It loads the
stored credential once, refreshes it when ``now >= expires_at``, persists the
refreshed access token, and never refreshes more than once per request.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from tareai.calendar.errors import (
    RefreshFailed,
    TokenExchangeFailed,
    safe_google_error_message,
)
from tareai.calendar.models import CalendarCredential, TokenGrant
from tareai.calendar.token_store import TokenStore
from tareai.config import GoogleOAuthConfig
from tareai.core.metrics import calendar_metrics

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_EXPIRES_IN_SECONDS = 3600


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return DEFAULT_EXPIRES_IN_SECONDS
        return parsed if parsed > 0 else DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenRefresher:
    """Stateless OAuth2 client for the Google token endpoint."""

    def __init__(
        self,
        config: GoogleOAuthConfig,
        http_client: httpx.AsyncClient,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._clock = clock

    def authorization_url(self, state: str) -> str:
        """Build the consent URL; offline access and forced consent yield a refresh token."""
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._config.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises
        ------
        RefreshFailed
            On transport errors, non-2xx responses, invalid JSON, or a
            payload without a non-empty ``access_token``.
        """
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data={
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            calendar_metrics.record_refresh(ok=False)
            raise RefreshFailed(
                f"Google OAuth token refresh request failed: {type(exc).__name__}"
            ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            calendar_metrics.record_refresh(ok=False)
            raise RefreshFailed(
                "Google OAuth token refresh failed "
                f"({response.status_code}): {safe_google_error_message(response)}"
            )

        try:
            grant = self._grant_from_response(response)
        except ValueError as exc:
            calendar_metrics.record_refresh(ok=False)
            raise RefreshFailed(str(exc)) from exc

        calendar_metrics.record_refresh(ok=True)
        return grant

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens.

        Raises
        ------
        TokenExchangeFailed
            If the exchange fails for any reason (network error, invalid
            code, malformed response).
        """
        payload = {
            "code": code,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            "redirect_uri": self._config.redirect_uri,
            "grant_type": "authorization_code",
        }

        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(
                f"Network error during token exchange: {type(exc).__name__}"
            ) from exc

        if response.status_code != 200:
            # Status only; the body may echo sensitive request details
            raise TokenExchangeFailed(f"Token endpoint returned HTTP {response.status_code}")

        try:
            return self._grant_from_response(response)
        except ValueError as exc:
            raise TokenExchangeFailed(str(exc)) from exc

    def _grant_from_response(self, response: httpx.Response) -> TokenGrant:
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ValueError("Google OAuth token endpoint returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise ValueError("Google OAuth token endpoint returned an unexpected payload shape")

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise ValueError("Google OAuth token response is missing a non-empty access_token")

        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        refresh_token = payload.get("refresh_token")
        scope = payload.get("scope")
        return TokenGrant(
            access_token=access_token.strip(),
            expires_at=self._clock() + timedelta(seconds=expires_in),
            scope=scope if isinstance(scope, str) and scope.strip() else None,
            refresh_token=(
                refresh_token.strip()
                if isinstance(refresh_token, str) and refresh_token.strip()
                else None
            ),
        )


class CredentialSession:
    """Request-scoped access-token provider for one user.

    Concurrent callers within the same request share a single refresh via an
    ``asyncio.Lock``; once a refresh has happened, later callers (including
    forced refreshes after a 401) reuse its token.
    """

    def __init__(
        self,
        user_id: str,
        store: TokenStore,
        refresher: TokenRefresher,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.user_id = user_id
        self._store = store
        self._refresher = refresher
        self._clock = clock
        self._credential: CalendarCredential | None = None
        self._refreshed = False
        self._load_lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()

    @property
    def refreshed(self) -> bool:
        return self._refreshed

    async def credential(self) -> CalendarCredential:
        """Load the stored credential once per session (raises ``NotConnected``)."""
        if self._credential is not None:
            return self._credential
        async with self._load_lock:
            if self._credential is None:
                self._credential = await self._store.get_credential(self.user_id)
            return self._credential

    async def access_token(self, *, force_refresh: bool = False) -> str:
        """Return a usable access token, refreshing at most once for this session.

        Raises
        ------
        NotConnected
            If the user has no stored credential.
        RefreshFailed
            If a needed refresh is rejected by the provider.
        """
        credential = await self.credential()
        if not self._needs_refresh(credential, force_refresh):
            return credential.access_token

        async with self._refresh_lock:
            credential = await self.credential()
            if not self._needs_refresh(credential, force_refresh):
                return credential.access_token

            logger.info(
                "Refreshing calendar access token: user_id=%r forced=%s",
                self.user_id,
                force_refresh,
            )
            grant = await self._refresher.refresh(credential.refresh_token)
            await self._store.persist_refreshed(self.user_id, grant.access_token, grant.expires_at)
            self._credential = credential.model_copy(
                update={
                    "access_token": grant.access_token,
                    "expires_at": grant.expires_at,
                    "updated_at": self._clock(),
                }
            )
            self._refreshed = True
            return self._credential.access_token

    def _needs_refresh(self, credential: CalendarCredential, force_refresh: bool) -> bool:
        if self._refreshed:
            return False
        if force_refresh:
            return True
        return credential.is_expired(self._clock())
