"""Structured Logging.

Provides structured JSON logging and event-context binding for ChatFlux.
"""

from chatflux.logging_config.config import LogFormat, LoggingConfig, LogLevel
from chatflux.logging_config.context import EventContext, get_context_dict
from chatflux.logging_config.setup import configure_logging

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "EventContext",
    "get_context_dict",
    "configure_logging",
]
