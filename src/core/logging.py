"""Logging and tracing setup built on Pydantic Logfire.

Modules log through the standard library (``logging.getLogger(__name__)``)
with structured ``extra=`` fields; Logfire collects those records alongside
the spans opened with :func:`span`.

    logger = logging.getLogger(__name__)
    logger.info("Joined cohort", extra={"cohort_id": cohort_id, "user_id": user_id})

    with span("cohort_service.join", cohort_id=cohort_id):
        ...
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


# Polled health checks are not traced
HEALTH_CHECK_URLS = "/health.*"


def configure_logfire() -> None:
    """Configure Logfire; records are only shipped when LOGFIRE_TOKEN is set."""
    logfire.configure(
        token=settings.logfire_token,
        service_name="cohortsync",
        service_version="0.1.0",
        environment=settings.app_env,
        send_to_logfire="if-token-present",
    )
    logging.getLogger(__name__).info("Logfire configured", extra={"environment": settings.app_env})


def instrument_fastapi(app: FastAPI) -> None:
    logfire.instrument_fastapi(app, excluded_urls=HEALTH_CHECK_URLS)


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Open a Logfire span named after the calling operation, e.g. ``message_service.send_message``."""
    return logfire.span(name, **attributes)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: object) -> None:
    """Log ``message`` at ``level`` with ``context`` as structured fields.

    Usage:
        log_with_context(logger, "info", "Rejected join of expired cohort", cohort_id="12", user_id="u1")
    """
    getattr(logger, level.lower())(message, extra=context)
