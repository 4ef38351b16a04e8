"""Application configuration loading and validation.

Reads ``tareai.toml`` (when present), resolves ``${VAR}`` references against
the environment, and falls back to plain environment variables for anything
the file does not set.  Returns a validated :class:`AppConfig`.

Example ``tareai.toml``::

    [tareai]
    app_url = "https://tareai.example.com"
    webhook_secret = "${TAREAI_WEBHOOK_SECRET}"

    [tareai.google]
    client_id = "${GOOGLE_CLIENT_ID}"
    client_secret = "${GOOGLE_CLIENT_SECRET}"

    [tareai.calendar]
    default_calendar_id = "primary"
    event_duration_minutes = 60
    timezone = "Europe/Madrid"

    [tareai.logging]
    level = "INFO"
    format = "json"
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_CONFIG_FILENAME = "tareai.toml"
DEFAULT_APP_URL = "http://localhost:3000"
DEFAULT_DB_NAME = "tareai"
DEFAULT_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.freebusy",
    "https://www.googleapis.com/auth/calendar.readonly",
)


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [tareai.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class GoogleOAuthConfig:
    """OAuth client registration for the Google Calendar integration."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    scopes: tuple[str, ...] = DEFAULT_SCOPES

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return (
            f"GoogleOAuthConfig(client_id={self.client_id!r}, client_secret=<REDACTED>, "
            f"redirect_uri={self.redirect_uri!r})"
        )


@dataclass
class CalendarSyncConfig:
    """Task-to-event sync behaviour from the [tareai.calendar] section."""

    default_calendar_id: str = "primary"
    event_duration_minutes: int = 60
    timezone: str = "Europe/Madrid"
    request_timeout_seconds: float = 30.0


@dataclass
class DatabaseConfig:
    """Connection parameters for the PostgreSQL datastore."""

    name: str = DEFAULT_DB_NAME
    host: str = "localhost"
    port: int = 5432
    user: str = "tareai"
    password: str = "tareai"
    ssl: str | None = None


@dataclass
class AppConfig:
    """Fully parsed application configuration."""

    app_url: str = DEFAULT_APP_URL
    # Shared secret for datastore webhooks that name the task owner in the record.
    webhook_secret: str = field(default="", repr=False)
    google: GoogleOAuthConfig = field(default_factory=GoogleOAuthConfig)
    calendar: CalendarSyncConfig = field(default_factory=CalendarSyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _parse_google(section: dict[str, Any], app_url: str) -> GoogleOAuthConfig:
    client_id = str(section.get("client_id") or _env("GOOGLE_CLIENT_ID")).strip()
    client_secret = str(section.get("client_secret") or _env("GOOGLE_CLIENT_SECRET")).strip()
    redirect_uri = str(
        section.get("redirect_uri")
        or _env("GOOGLE_OAUTH_REDIRECT_URI")
        or f"{app_url}/api/google-calendar/callback"
    ).strip()

    raw_scopes = section.get("scopes")
    if raw_scopes is None:
        scopes = DEFAULT_SCOPES
    elif isinstance(raw_scopes, list) and all(isinstance(s, str) for s in raw_scopes):
        scopes = tuple(s.strip() for s in raw_scopes if s.strip())
        if not scopes:
            raise ConfigError("tareai.google.scopes must contain at least one scope")
    else:
        raise ConfigError("tareai.google.scopes must be a list of strings")

    return GoogleOAuthConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        scopes=scopes,
    )


def _parse_calendar(section: dict[str, Any]) -> CalendarSyncConfig:
    default_calendar_id = str(section.get("default_calendar_id", "primary")).strip()
    if not default_calendar_id:
        raise ConfigError("tareai.calendar.default_calendar_id must be a non-empty string")

    try:
        duration = int(section.get("event_duration_minutes", 60))
    except (TypeError, ValueError) as exc:
        raise ConfigError("tareai.calendar.event_duration_minutes must be an integer") from exc
    if duration <= 0:
        raise ConfigError(
            f"Invalid tareai.calendar.event_duration_minutes: {duration!r}. "
            "Must be a positive integer."
        )

    timezone = str(section.get("timezone", "Europe/Madrid")).strip()
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid tareai.calendar.timezone: {timezone!r}") from exc

    try:
        timeout = float(section.get("request_timeout_seconds", 30.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError("tareai.calendar.request_timeout_seconds must be a number") from exc
    if timeout <= 0:
        raise ConfigError("tareai.calendar.request_timeout_seconds must be positive")

    return CalendarSyncConfig(
        default_calendar_id=default_calendar_id,
        event_duration_minutes=duration,
        timezone=timezone,
        request_timeout_seconds=timeout,
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_level = str(section.get("level", _env("TAREAI_LOG_LEVEL", "INFO"))).upper()
    log_format = str(section.get("format", _env("TAREAI_LOG_FORMAT", "text"))).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid tareai.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=section.get("log_root") or _env("TAREAI_LOG_ROOT") or None,
    )


def _database_env_defaults() -> dict[str, Any]:
    """Connection defaults from ``DATABASE_URL``, else the ``POSTGRES_*`` variables."""
    database_url = _env("DATABASE_URL")
    if database_url:
        parsed = urlparse(database_url)
        return {
            "host": parsed.hostname or "localhost",
            "port": parsed.port or 5432,
            "user": parsed.username or DEFAULT_DB_NAME,
            "password": parsed.password or DEFAULT_DB_NAME,
            "ssl": parse_qs(parsed.query).get("sslmode", [None])[0],
        }
    return {
        "host": _env("POSTGRES_HOST", "localhost"),
        "port": _env("POSTGRES_PORT", "5432"),
        "user": _env("POSTGRES_USER", DEFAULT_DB_NAME),
        "password": _env("POSTGRES_PASSWORD", DEFAULT_DB_NAME),
        "ssl": _env("POSTGRES_SSLMODE") or None,
    }


def _parse_database(section: dict[str, Any]) -> DatabaseConfig:
    params = _database_env_defaults()
    name = str(section.get("name", _env("TAREAI_DB_NAME", DEFAULT_DB_NAME))).strip()
    if not name:
        raise ConfigError("tareai.database.name must be a non-empty string")
    try:
        port = int(section.get("port", params["port"]))
    except (TypeError, ValueError) as exc:
        raise ConfigError("tareai.database.port must be an integer") from exc
    return DatabaseConfig(
        name=name,
        host=str(section.get("host", params["host"])),
        port=port,
        user=str(section.get("user", params["user"])),
        password=str(section.get("password", params["password"])),
        ssl=section.get("ssl", params["ssl"]),
    )


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate application configuration.

    Parameters
    ----------
    path:
        Explicit path to a TOML file.  When ``None``, ``TAREAI_CONFIG`` is
        consulted, then ``./tareai.toml``; a missing default file is not an
        error (environment variables alone are a valid configuration).

    Raises
    ------
    ConfigError
        If an explicit file is missing, the TOML is invalid, or a value fails
        validation.
    """
    explicit = path is not None or bool(_env("TAREAI_CONFIG"))
    toml_path = path or Path(_env("TAREAI_CONFIG") or DEFAULT_CONFIG_FILENAME)

    data: dict[str, Any] = {}
    if toml_path.exists():
        try:
            data = tomllib.loads(toml_path.read_bytes().decode())
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc
        data = resolve_env_vars(data)
    elif explicit:
        raise ConfigError(f"Config file not found: {toml_path}")

    section = data.get("tareai", {})
    if not isinstance(section, dict):
        raise ConfigError("[tareai] must be a TOML table")

    app_url = str(section.get("app_url") or _env("APP_URL") or DEFAULT_APP_URL).rstrip("/")

    return AppConfig(
        app_url=app_url,
        webhook_secret=str(
            section.get("webhook_secret") or _env("TAREAI_WEBHOOK_SECRET")
        ).strip(),
        google=_parse_google(section.get("google", {}), app_url),
        calendar=_parse_calendar(section.get("calendar", {})),
        logging=_parse_logging(section.get("logging", {})),
        database=_parse_database(section.get("database", {})),
    )
