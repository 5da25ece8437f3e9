"""
Structured logging configuration.

structlog builds the event dict (context variables, app context, exception
text) and hands it to the standard library as ``extra`` fields. A single
python-json-logger formatter renders every record, including those from
uvicorn and SQLAlchemy, as one flat JSON object.
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from pythonjsonlogger import jsonlogger

from orderflow.config import get_settings


class OrderflowJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds timestamp, level and logger name to each record."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["@timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname.lower()
        log_record["logger"] = record.name


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp app name and environment on every structlog event."""
    settings = get_settings()
    event_dict["app_name"] = settings.app_name
    event_dict["app_env"] = settings.app_env
    return event_dict


def build_formatter() -> logging.Formatter:
    return OrderflowJsonFormatter("%(message)s", rename_fields={"message": "event"})


def setup_logging() -> None:
    """
    Configure structured logging.

    structlog events are passed to the stdlib logger through
    ``render_to_log_kwargs``; the event name becomes the record message and
    bound key/values become record attributes.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(build_formatter())
    root_logger.addHandler(json_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
