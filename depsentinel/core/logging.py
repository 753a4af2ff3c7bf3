"""Structured logging configuration — structlog + stdlib logging."""

from __future__ import annotations

import logging
import logging.config
import os
import sys
from typing import Any

import structlog

# Event keys whose values are credentials (host rule passwords, VCS tokens).
SECRET_KEYS = frozenset({"token", "password", "authorization", "auth", "secret"})
REDACTED = "***"


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask credential values, including inside a ``headers`` mapping."""
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS and event_dict[key]:
            event_dict[key] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            k: REDACTED if k.lower() in SECRET_KEYS else v for k, v in headers.items()
        }
    return event_dict


def setup_logging(level: str | None = None) -> None:
    """Configure structlog and stdlib logging.

    Environment:
        DEPSENTINEL_LOG_LEVEL   level for depsentinel loggers (default INFO)
        DEPSENTINEL_LOG_FORMAT  console | json (default console)

    An explicit *level* (``--verbose``) wins over the environment. Output goes
    to stderr; stdout is reserved for command output such as ``--json``.
    """
    log_level = (level or os.environ.get("DEPSENTINEL_LOG_LEVEL", "INFO")).upper()
    as_json = os.environ.get("DEPSENTINEL_LOG_FORMAT", "console").lower() == "json"

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor
    if as_json:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    quiet = {name: {"level": "WARNING"} for name in _NOISY_LOGGERS}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": pre_chain,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "structlog",
                },
            },
            "root": {"handlers": ["stderr"], "level": "WARNING"},
            "loggers": {"depsentinel": {"level": log_level}, **quiet},
        }
    )


_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx", "httpcore")
