"""Structured logging configuration with separate access and application log handlers.

This module configures Python logging with:
- JSON structured logging for production
- Separate handlers for access logs (uvicorn) and application logs
- Log rotation support
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, TextIO

from pythonjsonlogger import jsonlogger

from .config import LoggingConfig

# LogRecord attributes that are never copied into the JSON payload as extras
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
    }
)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds logger, level, timestamp and extra context fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["logger"] = record.name
        log_record["level"] = record.levelname
        log_record["timestamp"] = self.formatTime(record, self.datefmt)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        # export_id, schedule_id, owner etc. passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_record[key] = value


def _build_handler(
    log_file: str | None,
    stream: TextIO,
    level: str,
    formatter: logging.Formatter,
    config: LoggingConfig,
) -> logging.Handler:
    """Create a rotating file handler when a path is configured, else a stream handler."""
    handler: logging.Handler
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=config.log_rotation_size,
            backupCount=config.log_rotation_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(stream)

    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging with separate access and application handlers.

    Args:
        config: Logging configuration settings
    """
    if config.json_logs:
        formatter: logging.Formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(logger)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        access_formatter: logging.Formatter = formatter
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        access_formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(config.log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(
        _build_handler(config.error_log_file, sys.stderr, config.log_level, formatter, config)
    )

    # Uvicorn access log goes to its own handler and does not propagate
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.setLevel(config.access_log_level)
    access_logger.propagate = False
    access_logger.handlers.clear()
    access_logger.addHandler(
        _build_handler(
            config.access_log_file,
            sys.stdout,
            config.access_log_level,
            access_formatter,
            config,
        )
    )

    for name in ("uvicorn", "uvicorn.error", "exporter", "src.exporter"):
        logging.getLogger(name).setLevel(config.log_level)

    # Collaborator clients are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)

    root_logger.info(
        f"Logging configured (level={config.log_level}, json={config.json_logs}, "
        f"errors={config.error_log_file or 'stderr'}, access={config.access_log_file or 'stdout'})"
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    """Log a message with additional context fields.

    With JSON logging enabled the context fields become searchable attributes.

    Example:
        log_with_context(
            logger, logging.INFO,
            "Export completed",
            export_id="0b6f...",
            data_type="agents",
            file_size_bytes=1024,
        )
    """
    logger.log(level, message, extra=context)
