"""
Structured logging for the backing-store engine.

JSON lines when running inside a control-plane pod, coloured console output
otherwise. Every event passes through ``redact_credentials`` so passwords
and data source strings never reach the log stream, even when a caller
binds them by mistake.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "vcstore"
REDACTED = "[redacted]"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "database_password",
        "admin_password",
        "data_source",
        "dataSource",
        "key_data",
    }
)

NOISY_LOGGERS = ("urllib3", "kubernetes", "asyncio", "sqlalchemy.engine", "aiomysql")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def redact_credentials(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask values bound under credential-bearing keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def level_first(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Put level and timestamp at the front of JSON lines."""
    head: EventDict = {}
    for key in ("level", "timestamp"):
        if key in event_dict:
            head[key] = event_dict.pop(key)
    head.update(event_dict)
    return head


def utc_timestamper(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    now = datetime.now(UTC)
    event_dict["timestamp"] = now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        utc_timestamper,
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        redact_credentials,
    ]


def configure_logging(json_logs: bool = True, log_level: str = "INFO") -> None:
    """Route structlog and stdlib logging through one stdout handler."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    shared = _shared_processors()

    if json_logs:
        # structlog events are rendered by the stdlib formatter below
        structlog_chain = shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter]
        render_chain: list[Processor] = [level_first, structlog.processors.JSONRenderer()]
    else:
        structlog_chain = shared + [structlog.dev.ConsoleRenderer(colors=True)]
        render_chain = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=structlog_chain,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Records from kubernetes, sqlalchemy and friends take this path
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render_chain],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def bind_instance(name: str, namespace: str) -> Iterator[None]:
    """Tag every event logged in this context with the instance identity."""
    with structlog.contextvars.bound_contextvars(instance=name, namespace=namespace):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
