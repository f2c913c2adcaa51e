import json
import logging
import sys
from typing import Any, Optional

from config.settings import Settings, get_settings

APP_LOGGER = "olenka"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure application logging."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Console handler (only once, lifespan may run several times under tests)
    if not any(isinstance(h.formatter, JSONFormatter) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(console_handler)

    # Application logger
    logging.getLogger(APP_LOGGER).setLevel(level)


def log_event(kind: str, level: int = logging.INFO, **fields: Any) -> None:
    """Log structured events."""
    logger = logging.getLogger(APP_LOGGER)
    logger.log(level, kind, extra={"extra_fields": {"event": kind, **fields}})
