"""Logging Setup.

One-call configuration for structured logging across ChatFlux.
Supports JSON output for production and colored console for development.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from chatflux.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig, LogLevel
from chatflux.logging_config.context import get_context_dict

# Attributes that modules attach with ``extra=`` and that should be emitted.
EXTRA_FIELDS = (
    "duration_ms",
    "count",
    "batch_size",
    "sink",
    "task",
    "partition",
    "offset",
    "extra_data",
)


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Produces one JSON object per log line with consistent fields:
    timestamp, level, logger, message, plus any bound event context.
    """

    def __init__(self, service_name: str = "chatflux", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if self.include_caller:
            log_entry["module"] = record.module
            log_entry["function"] = record.funcName
            log_entry["line"] = record.lineno

        ctx = get_context_dict()
        if ctx:
            log_entry.update(ctx)

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored console formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]

        ctx = get_context_dict()
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                ctx[key] = getattr(record, key)
        ctx_str = ""
        if ctx:
            parts = [f"{k}={v}" for k, v in ctx.items()]
            ctx_str = f" [{', '.join(parts)}]"

        line = (
            f"{color}{timestamp} {record.levelname:8s}{self.RESET} "
            f"{record.name}: {record.getMessage()}{ctx_str}"
        )

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)

        return line


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure structured logging for ChatFlux.

    Call once at process startup. Sets up the root logger with the
    appropriate formatter (JSON or console) and log level.

    Args:
        config: Logging configuration. Uses defaults if not provided.
                Level can be overridden with CHATFLUX_LOG_LEVEL,
                format with CHATFLUX_LOG_FORMAT.
    """
    config = config or DEFAULT_LOGGING_CONFIG

    env_level = os.environ.get("CHATFLUX_LOG_LEVEL", "").upper()
    if env_level and env_level in LogLevel.__members__:
        config = LoggingConfig(
            level=LogLevel(env_level),
            format=config.format,
            include_caller=config.include_caller,
            service_name=config.service_name,
        )

    env_format = os.environ.get("CHATFLUX_LOG_FORMAT", "").lower()
    if env_format and env_format in [f.value for f in LogFormat]:
        config = LoggingConfig(
            level=config.level,
            format=LogFormat(env_format),
            include_caller=config.include_caller,
            service_name=config.service_name,
        )

    if config.format == LogFormat.JSON:
        formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        formatter = ConsoleFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.value))

    # Quiet noisy third-party loggers
    for noisy in ("aiokafka", "asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
