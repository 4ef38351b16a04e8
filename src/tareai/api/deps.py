"""Process-wide dependencies for the HTTP API.

Provides:
- ``init_dependencies()`` / ``shutdown_dependencies()``: lifecycle of the
  database pool, the shared ``httpx.AsyncClient`` and the ``CalendarService``.
- FastAPI dependency functions for injecting the config, the service and the
  authenticated user id into route handlers.
"""

from __future__ import annotations

import logging

import httpx
from fastapi import Header, HTTPException

from tareai.calendar.links import TaskEventLinkStore
from tareai.calendar.schema import ensure_calendar_schema
from tareai.calendar.service import CalendarService
from tareai.calendar.token_store import TokenStore
from tareai.config import AppConfig, load_config
from tareai.core.logging import set_user_context
from tareai.db import Database

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"

_config: AppConfig | None = None
_database: Database | None = None
_http_client: httpx.AsyncClient | None = None
_calendar_service: CalendarService | None = None


async def init_dependencies(config: AppConfig | None = None) -> CalendarService:
    """Connect the datastore and build the ``CalendarService`` singleton.

    Called once during app startup (in the lifespan handler).
    """
    global _config, _database, _http_client, _calendar_service  # noqa: PLW0603

    _config = config or load_config()
    _database = Database.from_config(_config.database)
    await _database.provision()
    pool = await _database.connect()
    await ensure_calendar_schema(pool)

    _http_client = httpx.AsyncClient(timeout=_config.calendar.request_timeout_seconds)
    _calendar_service = CalendarService(
        tokens=TokenStore(pool),
        links=TaskEventLinkStore(pool),
        http_client=_http_client,
        config=_config,
    )
    if not _config.google.configured:
        logger.warning(
            "GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not set; calendar connect will be unavailable"
        )
    return _calendar_service


async def shutdown_dependencies() -> None:
    """Drain background sync jobs and release resources. Called during app shutdown."""
    global _config, _database, _http_client, _calendar_service  # noqa: PLW0603

    if _calendar_service is not None:
        await _calendar_service.shutdown()
        _calendar_service = None
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
    if _database is not None:
        await _database.close()
        _database = None
    _config = None


def get_config() -> AppConfig:
    """FastAPI dependency: provides the loaded ``AppConfig``."""
    if _config is None:
        raise RuntimeError("AppConfig not initialized; call init_dependencies() first")
    return _config


def get_calendar_service() -> CalendarService:
    """FastAPI dependency: provides the ``CalendarService`` singleton."""
    if _calendar_service is None:
        raise RuntimeError("CalendarService not initialized; call init_dependencies() first")
    return _calendar_service


def get_optional_user_id(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> str | None:
    """Return the user id set by the auth gateway, or ``None`` without a session."""
    if x_user_id is None or not x_user_id.strip():
        return None
    user_id = x_user_id.strip()
    set_user_context(user_id)
    return user_id


def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    """FastAPI dependency: the authenticated user id; 401 when absent."""
    user_id = get_optional_user_id(x_user_id)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
