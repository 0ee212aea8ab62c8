"""
Structured logging configuration for AuthBridge.

Uses structlog so every log entry is a key-value event that can carry
bound context (cookie, identity, pid) through one authentication session.

Setup:
    Call ``configure_logging()`` once at process startup (before any
    subsystem emits a log).  Every module then uses::

        import structlog
        logger = structlog.get_logger()

    Bound loggers carry context automatically::

        log = logger.bind(cookie="3-8f1c...", identity="alice")
        log.info("helper_spawned", pid=4242)
        # → {"event": "helper_spawned", "cookie": "3-8f1c...",
        #    "identity": "alice", "pid": 4242,
        #    "timestamp": "2026-10-18T...", "level": "info"}

Credentials typed by the user are never passed to a logger.  As a backstop
the pipeline masks any event key that names a credential (``password``,
``secret``, ``response``, ``answer``), and every entry carries the agent's
pid and login session so journald lines from concurrent agents stay apart.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

REDACTED = "***"

_SECRET_KEYS = frozenset({"password", "secret", "response", "answer"})


def redact_secrets(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask the value of any key naming a credential."""
    for key in event_dict.keys() & _SECRET_KEYS:
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    login_session: str = "",
) -> None:
    """
    Configure structlog + stdlib logging for the process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: If True, emit JSON lines (journald / log aggregation).
                     If False, emit coloured human-readable output.
        login_session: The logind session the agent serves; bound to every
                       entry together with the agent pid.

    Calling this more than once is safe: the stderr handler is only
    installed once, later calls just adjust the level.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
        )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Route stdlib loggers (asyncio, dbus) through the same pipeline.
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    if not any(
        isinstance(h, logging.StreamHandler)
        and isinstance(getattr(h, "formatter", None), structlog.stdlib.ProcessorFormatter)
        for h in root.handlers
    ):
        root.addHandler(handler)

    root.setLevel(log_level)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("dbus").setLevel(logging.WARNING)

    structlog.contextvars.bind_contextvars(agent_pid=os.getpid())
    if login_session:
        structlog.contextvars.bind_contextvars(login_session=login_session)
