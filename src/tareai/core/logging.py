"""Process logging: stdlib loggers rendered through structlog.

Every record carries the acting user id (set per request or per background
sync job) and the current OpenTelemetry trace/span ids.  Console output is
either human-readable (``text``) or JSON lines (``json``); ``log_root`` adds a
JSON file at ``{log_root}/tareai.log``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_user_context: ContextVar[str | None] = ContextVar("user_id", default=None)

# Per-request transport chatter; kept at WARNING.
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

LOG_FILENAME = "tareai.log"


def set_user_context(user_id: str | None) -> None:
    _user_context.set(user_id)


def get_user_context() -> str | None:
    return _user_context.get()


def add_user_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    event_dict["user_id"] = _user_context.get()
    return event_dict


def add_otel_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Attach hex trace/span ids; zeros when no span is recording."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_user_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
) -> None:
    """Install handlers on the root logger, replacing any existing ones."""
    json_console = fmt == "json"
    pre_chain = _pre_chain("iso" if json_console else "%H:%M:%S")
    renderer = (
        structlog.processors.JSONRenderer() if json_console else structlog.dev.ConsoleRenderer()
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if log_root is not None:
        log_dir = Path(log_root)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILENAME)
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))
        )
        root.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
