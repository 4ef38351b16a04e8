"""Shared fixtures for the HTTP API tests.

The app is built without running its lifespan (``httpx.ASGITransport`` does
not send lifespan events), and ``get_calendar_service`` is overridden with a
mock service so no database or Google endpoint is touched.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI

from tareai.api.app import create_app
from tareai.api.deps import get_calendar_service
from tareai.api.routers.oauth import _clear_state_store
from tareai.config import AppConfig, GoogleOAuthConfig

APP_URL = "https://app.example.com"
WEBHOOK_SECRET = "hook-secret"


def make_config(*, configured: bool = True) -> AppConfig:
    return AppConfig(
        app_url=APP_URL,
        webhook_secret=WEBHOOK_SECRET,
        google=GoogleOAuthConfig(
            client_id="client-id.apps.googleusercontent.com" if configured else "",
            client_secret="client-secret" if configured else "",
            redirect_uri=f"{APP_URL}/api/google-calendar/callback",
        ),
    )


def make_service(config: AppConfig | None = None) -> MagicMock:
    service = MagicMock()
    service.config = config or make_config()
    service.refresher.authorization_url = MagicMock(
        side_effect=lambda state: f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"
    )
    service.list_calendars = AsyncMock(return_value=[])
    service.list_events = AsyncMock(return_value=[])
    service.free_busy = AsyncMock(return_value=[])
    service.status = AsyncMock()
    service.disconnect = AsyncMock()
    service.connect = AsyncMock()
    return service


@pytest.fixture(autouse=True)
def clear_states():
    """Ensure the OAuth state store is empty before and after each test."""
    _clear_state_store()
    yield
    _clear_state_store()


@pytest.fixture
def service() -> MagicMock:
    return make_service()


@pytest.fixture
def unconfigured_service() -> MagicMock:
    return make_service(make_config(configured=False))


@pytest.fixture
def app(service: MagicMock) -> FastAPI:
    app = create_app(make_config())
    app.dependency_overrides[get_calendar_service] = lambda: service
    return app


@pytest.fixture
async def client(app: FastAPI):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
