"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from tareai.core.logging import (
    LOG_FILENAME,
    _QUIET_LOGGERS,
    _user_context,
    add_otel_context,
    add_user_context,
    configure_logging,
    get_user_context,
    set_user_context,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and user context between tests."""
    token = _user_context.set(None)
    yield
    _user_context.reset(token)
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).handlers.clear()


class TestUserContext:
    def test_set_and_get(self):
        set_user_context("user-1")
        assert get_user_context() == "user-1"

    def test_default_is_none(self):
        assert get_user_context() is None

    def test_processor_injects_user(self):
        set_user_context("user-7")
        result = add_user_context(None, "info", {"event": "test"})
        assert result["user_id"] == "user-7"


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("test-span"):
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] != "0" * 32
            assert len(result["span_id"]) == 16
        provider.shutdown()


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_noise_loggers_suppressed(self):
        configure_logging()
        assert logging.getLogger("httpx").level >= logging.WARNING
        assert logging.getLogger("uvicorn.access").level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_log_root_adds_json_file(self, tmp_path: Path):
        configure_logging(log_root=tmp_path / "logs")
        set_user_context("user-3")

        logging.getLogger("tareai.test").warning("calendar sync failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        files = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
        assert len(files) == 1
        record = json.loads((tmp_path / "logs" / LOG_FILENAME).read_text().splitlines()[-1])
        assert record["event"] == "calendar sync failed"
        assert record["user_id"] == "user-3"
        assert record["level"] == "warning"

    def test_reconfigure_replaces_handlers(self):
        configure_logging()
        configure_logging()

        assert len(logging.getLogger().handlers) == 1
