"""Tests for tareai.config: TOML loading, env-var resolution and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from tareai.config import (
    DEFAULT_SCOPES,
    AppConfig,
    ConfigError,
    GoogleOAuthConfig,
    load_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit

_ENV_VARS = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_OAUTH_REDIRECT_URI",
    "APP_URL",
    "TAREAI_CONFIG",
    "TAREAI_WEBHOOK_SECRET",
    "TAREAI_LOG_LEVEL",
    "TAREAI_LOG_FORMAT",
    "TAREAI_LOG_ROOT",
    "TAREAI_DB_NAME",
    "DATABASE_URL",
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "POSTGRES_SSLMODE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # No ./tareai.toml in the working directory.
    monkeypatch.chdir(tmp_path)


def _write_toml(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "tareai.toml"
    path.write_text(content)
    return path


# ---------------------------------------------------------------------------
# resolve_env_vars
# ---------------------------------------------------------------------------


class TestResolveEnvVars:
    def test_substitutes_nested_values(self, monkeypatch):
        monkeypatch.setenv("CAL_SECRET", "s3cret")
        data = {"google": {"client_secret": "${CAL_SECRET}", "scopes": ["a", "${CAL_SECRET}"]}}

        resolved = resolve_env_vars(data)

        assert resolved == {"google": {"client_secret": "s3cret", "scopes": ["a", "s3cret"]}}

    def test_non_string_leaves_untouched(self):
        assert resolve_env_vars({"port": 5432, "ssl": None}) == {"port": 5432, "ssl": None}

    def test_missing_vars_reported_together(self):
        with pytest.raises(ConfigError, match="MISSING_ONE, MISSING_TWO"):
            resolve_env_vars("${MISSING_ONE}-${MISSING_TWO}")


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfigDefaults:
    def test_no_file_no_env_gives_defaults(self):
        config = load_config()

        assert isinstance(config, AppConfig)
        assert config.app_url == "http://localhost:3000"
        assert config.google.configured is False
        assert config.google.scopes == DEFAULT_SCOPES
        assert config.google.redirect_uri == (
            "http://localhost:3000/api/google-calendar/callback"
        )
        assert config.calendar.default_calendar_id == "primary"
        assert config.calendar.event_duration_minutes == 60
        assert config.calendar.timezone == "Europe/Madrid"
        assert config.logging.level == "INFO"
        assert config.logging.format == "text"
        assert config.database.name == "tareai"

    def test_env_only_configuration(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid.apps.googleusercontent.com")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "csecret")
        monkeypatch.setenv("APP_URL", "https://tareai.example.com/")
        monkeypatch.setenv("TAREAI_LOG_LEVEL", "debug")

        config = load_config()

        assert config.google.configured is True
        assert config.app_url == "https://tareai.example.com"
        assert config.google.redirect_uri == (
            "https://tareai.example.com/api/google-calendar/callback"
        )
        assert config.logging.level == "DEBUG"

    def test_database_params_from_database_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db.internal:6543/x?sslmode=require")

        config = load_config()

        assert config.database.host == "db.internal"
        assert config.database.port == 6543
        assert config.database.user == "u"
        assert config.database.password == "p"
        assert config.database.ssl == "require"

    def test_database_params_from_postgres_vars(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_HOST", "pg")
        monkeypatch.setenv("POSTGRES_PORT", "6000")
        monkeypatch.setenv("POSTGRES_USER", "alice")
        monkeypatch.setenv("POSTGRES_PASSWORD", "pw")
        monkeypatch.setenv("POSTGRES_SSLMODE", "disable")

        database = load_config().database

        assert (database.host, database.port, database.user, database.password) == (
            "pg",
            6000,
            "alice",
            "pw",
        )
        assert database.ssl == "disable"

    def test_database_url_without_credentials_uses_defaults(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://db.example.com/tareai")

        database = load_config().database

        assert (database.host, database.port, database.user, database.password) == (
            "db.example.com",
            5432,
            "tareai",
            "tareai",
        )
        assert database.ssl is None

    def test_invalid_port_raises(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_PORT", "not-a-port")

        with pytest.raises(ConfigError, match="port"):
            load_config()


class TestLoadConfigFile:
    def test_full_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CAL_CLIENT_SECRET", "from-env")
        path = _write_toml(
            tmp_path,
            """
[tareai]
app_url = "https://app.example.com"

[tareai.google]
client_id = "cid"
client_secret = "${CAL_CLIENT_SECRET}"
scopes = ["https://www.googleapis.com/auth/calendar"]

[tareai.calendar]
default_calendar_id = "team@group.calendar.google.com"
event_duration_minutes = 30
timezone = "America/Mexico_City"

[tareai.logging]
level = "warning"
format = "json"

[tareai.database]
name = "tareai_test"
""",
        )

        config = load_config(path)

        assert config.app_url == "https://app.example.com"
        assert config.google.client_secret == "from-env"
        assert config.google.scopes == ("https://www.googleapis.com/auth/calendar",)
        assert config.calendar.default_calendar_id == "team@group.calendar.google.com"
        assert config.calendar.event_duration_minutes == 30
        assert config.calendar.timezone == "America/Mexico_City"
        assert config.logging.level == "WARNING"
        assert config.logging.format == "json"
        assert config.database.name == "tareai_test"

    def test_tareai_config_env_points_at_file(self, tmp_path, monkeypatch):
        path = _write_toml(tmp_path, '[tareai]\napp_url = "https://env.example.com"\n')
        monkeypatch.setenv("TAREAI_CONFIG", str(path))

        assert load_config().app_url == "https://env.example.com"

    def test_explicit_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml_raises(self, tmp_path):
        path = _write_toml(tmp_path, "[tareai\n")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)

    @pytest.mark.parametrize(
        ("section", "match"),
        [
            ("[tareai.calendar]\nevent_duration_minutes = 0\n", "event_duration_minutes"),
            ("[tareai.calendar]\ntimezone = \"Mars/Olympus\"\n", "timezone"),
            ("[tareai.calendar]\ndefault_calendar_id = \"  \"\n", "default_calendar_id"),
            ("[tareai.logging]\nformat = \"xml\"\n", "format"),
            ("[tareai.google]\nscopes = \"calendar\"\n", "scopes"),
            ("[tareai.google]\nscopes = []\n", "scopes"),
        ],
    )
    def test_validation_errors(self, tmp_path, section, match):
        path = _write_toml(tmp_path, section)

        with pytest.raises(ConfigError, match=match):
            load_config(path)


class TestGoogleOAuthConfig:
    def test_repr_redacts_secret(self):
        config = GoogleOAuthConfig(client_id="cid", client_secret="super-secret")

        assert "super-secret" not in repr(config)
        assert "<REDACTED>" in repr(config)

    def test_configured_requires_both_values(self):
        assert GoogleOAuthConfig(client_id="cid").configured is False
        assert GoogleOAuthConfig(client_id="cid", client_secret="s").configured is True


class TestWebhookSecret:
    def test_disabled_by_default(self):
        assert load_config().webhook_secret == ""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TAREAI_WEBHOOK_SECRET", " whsec-1 ")

        assert load_config().webhook_secret == "whsec-1"

    def test_file_value_and_repr_redaction(self, tmp_path):
        path = _write_toml(tmp_path, '[tareai]\nwebhook_secret = "whsec-file"\n')

        config = load_config(path)

        assert config.webhook_secret == "whsec-file"
        assert "whsec-file" not in repr(config)
