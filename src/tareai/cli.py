"""CLI for tareai: run the calendar sync API and manage its schema."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import uvicorn

from tareai import __version__
from tareai.calendar.schema import ensure_calendar_schema
from tareai.config import AppConfig, ConfigError, load_config
from tareai.core.logging import configure_logging
from tareai.core.metrics import init_metrics
from tareai.db import Database

logger = logging.getLogger(__name__)


def _load(config_path: Path | None) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """TareAI: Google Calendar sync for tasks."""


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to tareai.toml (defaults to $TAREAI_CONFIG or ./tareai.toml)",
)
@click.option("--host", default="0.0.0.0", show_default=True, help="Bind address")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port")
def serve(config_path: Path | None, host: str, port: int) -> None:
    """Run the HTTP API under uvicorn."""
    from tareai.api.app import create_app

    config = _load(config_path)
    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(level=config.logging.level, fmt=config.logging.format, log_root=log_root)
    init_metrics("tareai")

    app = create_app(config)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=config.logging.level.lower(),
        log_config=None,
        timeout_graceful_shutdown=10,
    )


@cli.command("init-db")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to tareai.toml (defaults to $TAREAI_CONFIG or ./tareai.toml)",
)
def init_db(config_path: Path | None) -> None:
    """Create the database (if missing) and the calendar sync tables."""
    config = _load(config_path)
    configure_logging(level=config.logging.level, fmt=config.logging.format)
    asyncio.run(_init_db(config))
    click.echo(f"Calendar sync schema ready in database {config.database.name!r}")


async def _init_db(config: AppConfig) -> None:
    db = Database.from_config(config.database)
    await db.provision()
    pool = await db.connect()
    try:
        await ensure_calendar_schema(pool)
    finally:
        await db.close()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
