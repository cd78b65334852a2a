"""structlog setup for the tracker process.

``cli.main`` calls :func:`configure_logging` before anything else runs.
Tracker modules log through ``structlog.get_logger(__name__)`` with dotted
event names (``controller.flushed``, ``scheduler.channel_dropped``); the
Twitch client and third-party libraries log through stdlib ``logging``.
Both end up on the same stdout handler.

:func:`bind_iteration` stores the collection iteration in structlog's
context variables, so every record emitted after a pass has drained carries
``iteration``.
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_REDACTED = "[REDACTED]"

# Matched case-insensitively against event-dict keys.
_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "client_secret",
    "secret",
    "token",
    "password",
    "bearer",
    "authorization",
    "database_url",
})

_CHATTY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def _is_secret(key: object) -> bool:
    lowered = str(key).lower()
    return any(secret in lowered for secret in _SECRET_SUBSTRINGS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask the Twitch app token, client secret and database URL.

    Top-level keys and the keys of dict values one level down (request
    headers) are checked.
    """
    for key, value in list(event_dict.items()):
        if _is_secret(key):
            event_dict[key] = _REDACTED
        elif isinstance(value, dict):
            for nested_key in list(value):
                if _is_secret(nested_key):
                    value[nested_key] = _REDACTED
    return event_dict


def bind_iteration(iteration: int) -> None:
    """Attach the current collection iteration to all subsequent log records."""
    structlog.contextvars.bind_contextvars(iteration=iteration)


def _renderer(is_development: bool) -> Processor:
    if is_development:
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog and stdlib records to stdout.

    ``DEBUG`` renders coloured console lines; any other level renders one
    JSON object per line with ``timestamp``, ``level``, ``logger``,
    ``event`` and, once bound, ``iteration``.  Unknown level names fall back
    to ``INFO``.  Repeated calls replace the root handler.
    """
    level_name = log_level.upper()
    is_development = level_name == "DEBUG"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(is_development),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    # One line per HTTP request or SQL statement is too much outside DEBUG.
    if not is_development:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
