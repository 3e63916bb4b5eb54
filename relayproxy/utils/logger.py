"""Structured logging utilities for relayproxy.

This module provides async-safe structured logging using structlog.
Log lines emitted while a request is being relayed carry its relay_id.
"""

import logging
import os
import sys
import time
from contextvars import ContextVar
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

# Context variable for per-request correlation
relay_id_var: ContextVar[Optional[str]] = ContextVar("relay_id", default=None)


def add_relay_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add relay_id to log context if available."""
    relay_id = relay_id_var.get()
    if relay_id:
        event_dict["relay_id"] = relay_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add epoch timestamp to log entries."""
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_relay_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "relayproxy") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def set_relay_id(relay_id: str) -> None:
    """Set relay ID in context for all subsequent logs.

    Args:
        relay_id: Unique identifier for the relayed request
    """
    relay_id_var.set(relay_id)


def clear_relay_id() -> None:
    """Clear relay ID from context."""
    relay_id_var.set(None)


def configure_from_env() -> bool:
    """Configure logging from DEBUG, LOG_LEVEL and JSON_LOGS.

    Returns:
        True when DEBUG is enabled.
    """
    debug = os.getenv("DEBUG", "false").lower() == "true"
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "DEBUG" if debug else "INFO"),
        json_output=os.getenv("JSON_LOGS", "true").lower() == "true",
    )
    return debug
