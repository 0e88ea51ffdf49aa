"""structlog setup for the outreach service.

Modules log with keyword context::

    log = get_logger(__name__)
    log.info("Outreach sent", practice_id=str(practice_id), channel="sms")
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

SERVICE_NAME = "benefit-outreach"


def _service_stamper(service_name: str) -> Any:
    def stamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return stamp


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    service_name: str | None = SERVICE_NAME,
) -> None:
    """Route structlog through stdout.

    Args:
        level: Minimum level name, e.g. "DEBUG"
        json_output: JSON lines for log shipping instead of console output
        service_name: Added as ``service`` to every entry when set
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    # sqlalchemy/uvicorn still log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    if service_name:
        processors.insert(0, _service_stamper(service_name))

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
