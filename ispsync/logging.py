"""Process-wide logging setup.

``configure_logging`` is called once by the API entrypoint and by the Celery
worker. Everything else just asks for a named logger.
"""

import json
import logging
import logging.config
from datetime import UTC, datetime

from ispsync.config import settings

_configured = False


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with request/task context when present."""

    _context_fields = ("request_id", "tenant_id", "task_id", "customer_id")

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in self._context_fields:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = str(value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    global _configured
    if _configured:
        return
    formatter = (
        {"()": "ispsync.logging.JsonFormatter"}
        if settings.log_json
        else {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"}
    )
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": formatter},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                }
            },
            "root": {"level": settings.log_level.upper(), "handlers": ["console"]},
            "loggers": {
                "uvicorn.access": {"level": "WARNING"},
                "routeros_api": {"level": "WARNING"},
            },
        }
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
