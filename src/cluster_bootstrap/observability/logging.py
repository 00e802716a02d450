"""
cluster_bootstrap.observability.logging

Structured logging for the CLI, provisioning runs and the status API.

Responsibilities:
- Configure `structlog` to emit one JSON object per line (journald keeps one per unit).
- Scrub secret-bearing fields before rendering; a token or password never reaches a log.
- Provide `get_logger` for module-level bound loggers.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from typing import Any, TextIO

import structlog

REDACTED = "[redacted]"
SECRET_FIELDS = frozenset({"password", "token", "auth_key", "private_key", "key_pem"})


def redact_secrets(fields: Iterable[str] = SECRET_FIELDS):
    names = frozenset(fields)

    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for name in names.intersection(event_dict):
            event_dict[name] = REDACTED
        return event_dict

    return processor


def stamp_service(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def configure_logging(*, service_name: str, level: str, stream: TextIO = sys.stdout) -> None:
    """
    `stream` is stdout for the status API and stderr for the CLI, whose stdout carries
    command output (kubeconfigs, unit graphs, shell exports).
    """

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=logging.getLevelNamesMapping().get(level.upper(), logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            stamp_service(service_name),
            redact_secrets(),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Run and gate metadata is bound through contextvars in `observability.context`,
# request metadata in `observability.middleware`.
