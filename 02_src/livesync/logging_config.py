"""Structured logging configuration for livesync."""

import json
import logging
import logging.config
import logging.handlers
import os
from datetime import datetime, timezone
from pathlib import Path

from .config import DEFAULT_LOG_PATH


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # extra={"context": {...}} at the call site
        if hasattr(record, "context"):
            log_data["context"] = record.context

        return json.dumps(log_data, default=str)


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    console: bool = True,
) -> None:
    """
    Setup structured logging for the sync client.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   Defaults to LOG_LEVEL env var or INFO.
        log_file: Path to log file. Defaults to 04_logs/app.log.
        console: Also write JSON lines to stdout.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    if log_file is None:
        log_file = str(DEFAULT_LOG_PATH)

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    handlers = ["file", "console"] if console else ["file"]

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "livesync.logging_config.JSONFormatter",
            },
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": log_file,
                "maxBytes": 10 * 1024 * 1024,  # 10 MB
                "backupCount": 5,
                "formatter": "json",
                "encoding": "utf-8",
            },
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            # request lines from the HTTP client are noise at INFO
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
        "root": {
            "level": log_level.upper(),
            "handlers": handlers,
        },
    }

    logging.config.dictConfig(logging_config)


class SessionLogger(logging.LoggerAdapter):
    """Stamps every record with the session it belongs to.

    Context values may be callables; they are read when the record is
    emitted, so fields like the connection status stay current. A call's
    own extra={"context": {...}} is merged on top.
    """

    def process(self, msg, kwargs):
        context = {
            key: value() if callable(value) else value
            for key, value in self.extra.items()
        }
        extra = kwargs.setdefault("extra", {})
        context.update(extra.get("context") or {})
        extra["context"] = context
        return msg, kwargs


def get_logger(name: str, **context) -> logging.Logger | SessionLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__ of the module)
        **context: Fields attached to every record, e.g. user_id or channel

    Returns:
        Logger instance, wrapped in a SessionLogger when context is given
    """
    logger = logging.getLogger(name)
    if context:
        return SessionLogger(logger, context)
    return logger
