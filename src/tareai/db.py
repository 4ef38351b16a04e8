"""PostgreSQL pool lifecycle for the calendar stores."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import asyncpg

if TYPE_CHECKING:
    from tareai.config import DatabaseConfig

logger = logging.getLogger(__name__)

_VALID_SSL_MODES = {"disable", "prefer", "allow", "require", "verify-ca", "verify-full"}
_SSL_UPGRADE_CONNECTION_LOST = "unexpected connection_lost() call"


def _normalize_ssl_mode(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    mode = value.strip().lower()
    if mode not in _VALID_SSL_MODES:
        logger.warning("Ignoring invalid PostgreSQL sslmode value: %s", value)
        return None
    return mode


def should_retry_with_ssl_disable(exc: Exception, configured_ssl: str | None) -> bool:
    """True when the server dropped an implicit SSL upgrade and no mode was configured."""
    return (
        configured_ssl is None
        and isinstance(exc, ConnectionError)
        and _SSL_UPGRADE_CONNECTION_LOST in str(exc)
    )


class Database:
    """Owns the asyncpg pool handed to the token and link stores."""

    def __init__(
        self,
        db_name: str,
        host: str = "localhost",
        port: int = 5432,
        user: str = "postgres",
        password: str = "postgres",
        ssl: str | None = None,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ) -> None:
        self.db_name = db_name
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.ssl = ssl
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> Database:
        return cls(
            db_name=config.name,
            host=config.host,
            port=int(config.port),
            user=config.user,
            password=config.password,
            ssl=_normalize_ssl_mode(config.ssl),
        )

    def _connect_kwargs(self, database: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": database,
        }
        if self.ssl is not None:
            kwargs["ssl"] = self.ssl
        return kwargs

    async def _open(self, opener: Callable[..., Awaitable[Any]], **kwargs: Any) -> Any:
        try:
            return await opener(**kwargs)
        except Exception as exc:
            if not should_retry_with_ssl_disable(exc, self.ssl):
                raise
            logger.info(
                "Retrying PostgreSQL connection to %s with ssl=disable after SSL upgrade loss",
                kwargs["database"],
            )
            return await opener(**{**kwargs, "ssl": "disable"})

    async def provision(self) -> None:
        """Create the application database through the ``postgres`` maintenance DB."""
        conn = await self._open(asyncpg.connect, **self._connect_kwargs("postgres"))
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM pg_database WHERE datname = $1", self.db_name
            )
            if exists:
                logger.info("Database already exists: %s", self.db_name)
                return
            # Identifiers cannot be bound as parameters.
            quoted = self.db_name.replace('"', '""')
            await conn.execute(f'CREATE DATABASE "{quoted}" TEMPLATE template0')
            logger.info("Created database: %s", self.db_name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        self.pool = await self._open(
            asyncpg.create_pool,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            **self._connect_kwargs(self.db_name),
        )
        logger.info("Connection pool created for: %s", self.db_name)
        return self.pool

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("Connection pool closed for: %s", self.db_name)
