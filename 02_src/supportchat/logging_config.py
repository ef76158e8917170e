"""Logging for the chat service: JSON lines to a rotating file, readable console."""

import json
import logging
import logging.config
import logging.handlers
import os
from datetime import datetime, timezone
from pathlib import Path

from .config import DEFAULT_LOG_PATH

# Context keys promoted to top-level fields so log lines can be filtered per chat
PROMOTED_FIELDS = ("conversation_id", "message_id", "party", "action")

# Request-per-poll loggers; at INFO they would log every client poll cycle
CHATTY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s%(context_suffix)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = dict(getattr(record, "context", None) or {})
        for key in PROMOTED_FIELDS:
            if key in context:
                log_data[key] = context.pop(key)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Plain text with the ``context`` extra appended as key=value pairs."""

    def __init__(self, fmt: str = CONSOLE_FORMAT, datefmt: str | None = None):
        super().__init__(fmt, datefmt)

    def format(self, record: logging.LogRecord) -> str:
        context = getattr(record, "context", None) or {}
        record.context_suffix = "".join(f" {k}={v}" for k, v in context.items())
        return super().format(record)


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    console: bool = True,
    console_format: str | None = None,
) -> None:
    """
    Configure root logging for the server process.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
                   Defaults to the LOG_LEVEL env var or INFO.
        log_file: JSON log file. Defaults to 04_logs/app.log.
        console: Also log to stdout.
        console_format: "text" or "json". Defaults to the LOG_FORMAT env
                        var or "text".
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = str(DEFAULT_LOG_PATH)
    if console_format is None:
        console_format = os.getenv("LOG_FORMAT", "text")

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    handlers = {
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "formatter": "json",
            "encoding": "utf-8",
        },
    }
    if console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "json" if console_format.lower() == "json" else "text",
            "stream": "ext://sys.stdout",
        }

    level = log_level.upper()
    # Chatty loggers still follow DEBUG when it is asked for
    quiet_level = level if level == "DEBUG" else "WARNING"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": "supportchat.logging_config.JSONFormatter"},
                "text": {"()": "supportchat.logging_config.ConsoleFormatter"},
            },
            "handlers": handlers,
            "loggers": {name: {"level": quiet_level} for name in CHATTY_LOGGERS},
            "root": {
                "level": level,
                "handlers": list(handlers),
            },
        }
    )


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass ``__name__``."""
    return logging.getLogger(name)
