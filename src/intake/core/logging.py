"""structlog configuration shared by the API process and the sync worker.

Uses structured JSON logging in production and human-readable console
output elsewhere. Log calls across the package use dotted event names
(``worker.sync_succeeded``) with keyword context; phone numbers and full
identifier numbers are never passed as context.
"""

from __future__ import annotations

import logging
import sys

import structlog

from src.intake.config import Environment, get_settings


def configure_structlog() -> None:
    """Configure structlog processors based on environment."""
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    shared_processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        shared_processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def id_suffix(id_number: str | None, length: int = 4) -> str:
    """Last ``length`` characters of an identifier, for log correlation."""
    return (id_number or "")[-length:]
