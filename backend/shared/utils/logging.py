"""
Structured logging for the verification worker and the one-off runner.
structlog renders every record, including those from SQLAlchemy and Playwright via the stdlib bridge.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from shared.config import Environment, get_settings

# Event keys whose values must never reach the log sink.
SECRET_KEYS = frozenset({"password", "directory_password", "secret", "token"})
REDACTED = "***"

QUIET_LOGGERS = ("asyncio", "sqlalchemy.engine", "asyncpg")


def redact_secrets(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def _renderer(environment: Environment) -> Processor:
    if environment is Environment.DEV:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(
    service_name: str,
    extra_context: dict[str, Any] | None = None,
    level: str | None = None,
) -> None:
    """
    Configure structured logging for a process.

    Args:
        service_name: "scheduler", "verifier" or "seed"; bound to every entry.
        extra_context: Additional static context fields bound to every log entry.
        level: Overrides the configured log level (the runner's --debug flag).
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings.environment),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name,
        instance_id=settings.instance_id,
        environment=settings.environment.value,
        **(extra_context or {}),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
