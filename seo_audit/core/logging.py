"""
Structured logging using structlog.

- JSON lines in production, coloured console in development
- Every event carries severity, an ISO timestamp and the app version
- audit_log_context() binds the audit id for everything logged while an
  audit runs, including events from crawler fetch tasks it spawns
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from seo_audit.core.config import get_settings

SEVERITY_BY_METHOD = {
    "debug": "DEBUG",
    "info": "INFO",
    "warning": "WARNING",
    "error": "ERROR",
    "critical": "CRITICAL",
}

# One line per fetch from these would drown the crawl events
NOISY_LOGGERS = ("asyncio", "httpx", "httpcore")


def add_severity(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    """Map structlog levels to GCP/Datadog severity levels."""
    event_dict["severity"] = SEVERITY_BY_METHOD.get(method, "INFO")
    return event_dict


def add_app_context(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    settings = get_settings()
    event_dict.setdefault("app", "seo-audit-tool")
    event_dict.setdefault("version", settings.APP_VERSION)
    return event_dict


def audit_log_context(audit_id: str) -> AbstractContextManager:
    return structlog.contextvars.bound_contextvars(audit_id=audit_id)


def build_processors(log_format: str) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_severity,
        add_app_context,
    ]
    if log_format == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging() -> None:
    settings = get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        processors=build_processors(settings.LOG_FORMAT),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    noisy_level = logging.WARNING if settings.ENV == "production" else log_level
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(noisy_level, logging.INFO))
