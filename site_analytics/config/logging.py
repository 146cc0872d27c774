"""
Logging Configuration for the Site Analytics Rollup Service

structlog renders every record, including stdlib records from uvicorn,
SQLAlchemy and redis, through one handler on stdout. Records carry the
service name and, inside a request, the request_id bound by the middleware.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level

from site_analytics.config.settings import get_settings

# Libraries whose INFO output is per-statement or per-connection
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncio")


def _add_service(app_name: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", app_name)
        return event_dict
    return processor


def render_as_json(log_format: str) -> bool:
    """``json`` renders JSON lines; ``text`` or ``console`` render for humans"""
    return log_format.lower() == "json"


def configure_logging(log_level: Optional[str] = None) -> None:
    """
    Configure structured logging for the API, the queue drain CLI and workflows.

    Args:
        log_level: Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    numeric_level = getattr(logging, level, logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        _add_service(settings.app_name),
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if render_as_json(settings.monitoring.log_format):
        renderer = JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=settings.is_development)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=renderer, foreign_pre_chain=shared_processors))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    # uvicorn installs its own handlers; send its records through ours instead
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=settings.monitoring.log_format,
        environment=settings.app_env,
    )
