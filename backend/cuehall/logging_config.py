"""Structured logging configuration using structlog.

Services log through ``logging.getLogger``; records are rendered by the
structlog chain, so anything bound with ``operation_context`` or
``bind_context`` (request id, operation, table, user, session) appears on
every line logged inside that scope. JSON in production, console otherwise.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Keys whose values are never rendered
REDACTED_KEYS = frozenset({"client_secret", "clientSecret", "authorization", "stripe_signature"})
REDACTED = "[redacted]"


def drop_empty_context(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """Remove keys bound with a None value (e.g. no table for a purchase)."""
    return {k: v for k, v in event_dict.items() if v is not None}


def redact_secrets(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    app_env: str = "development",
) -> None:
    """Route stdlib and structlog loggers through one processor chain.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Force JSON output outside production
        app_env: Application environment
    """
    use_json = json_logs or app_env == "production"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        drop_empty_context,
        redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if use_json:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "stripe", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def operation_context(
    operation: str,
    *,
    table_id: str | None = None,
    user_id: str | None = None,
    session_id: str | None = None,
    **extra: Any,
) -> Iterator[None]:
    """Bind one table operation's identifiers for the duration of the block.

    Keys are restored on exit, so nested or sequential operations on the
    same task never leak ids into each other.
    """
    values = {
        "operation": operation,
        "table_id": table_id,
        "user_id": user_id,
        "session_id": session_id,
        **extra,
    }
    with structlog.contextvars.bound_contextvars(
        **{k: v for k, v in values.items() if v is not None}
    ):
        yield


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to all subsequent log calls in this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
