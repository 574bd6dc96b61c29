"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys

import structlog

from .config import LoggingConfig

# Chatty third-party loggers that would otherwise drown the import events.
_QUIET_LOGGERS = ("aiokafka", "botocore", "boto3", "httpx", "pdfminer", "sqlalchemy.engine")


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Configure structlog for the import process.

    Parameters
    ----------
    json:
        If *True* (the default, suitable for production / K8s), output
        JSON lines.  If *False*, use a human-friendly console renderer.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_config(config: LoggingConfig) -> None:
    """Apply :func:`setup_logging` using a :class:`LoggingConfig`."""
    setup_logging(json=config.json_output, level=config.level)


def bind_import_context(provider_message_id: str, **fields: object) -> None:
    """Bind the message being imported to every log event on this task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(provider_message_id=provider_message_id, **fields)


def clear_import_context() -> None:
    structlog.contextvars.clear_contextvars()
