"""HTTP API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler for startup/shutdown of the DB pool, HTTP client and
  background sync jobs
- Health endpoint at GET /api/health
- The Google Calendar routers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tareai import __version__
from tareai.api.deps import init_dependencies, shutdown_dependencies
from tareai.api.middleware import register_error_handlers
from tareai.api.models import HealthResponse
from tareai.api.routers.calendar import router as calendar_router
from tareai.api.routers.oauth import router as oauth_router
from tareai.config import AppConfig

logger = logging.getLogger(__name__)


def create_app(
    config: AppConfig | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Loaded configuration.  When ``None`` it is loaded during startup.
    cors_origins:
        Allowed CORS origins. Defaults to the configured ``app_url``, or
        ``["http://localhost:3000"]`` when no config is passed.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_dependencies(config)
        logger.info("Calendar sync API started")
        yield
        await shutdown_dependencies()

    if cors_origins is None:
        cors_origins = [config.app_url] if config is not None else ["http://localhost:3000"]

    app = FastAPI(
        title="TareAI Calendar Sync API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(oauth_router)
    app.include_router(calendar_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse()

    return app
