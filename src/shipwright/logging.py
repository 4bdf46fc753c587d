"""Structured logging for shipwright.

This module configures structlog on top of the standard library, giving:
- JSON-formatted logs for production (machine-readable)
- Pretty console logs for development (human-readable)
- Context binding (run_id, build_number, stage)

Usage:
    from shipwright.logging import configure_logging, get_logger

    configure_logging(json_format=True)

    logger = get_logger("my.module")
    logger.info("stage_started", run_id="01J...", stage="checkout")

Context binding:
    logger = run_logger(run.id, run.build_number)
    logger.info("run_started")  # run_id and build_number included
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import Processor

_configured = False


def configure_logging(
    json_format: bool | None = None,
    level: int | str | None = None,
    logger_factory: Any = None,
) -> None:
    """Configure structured logging for shipwright.

    Call this once at application startup before any logging occurs. Unset
    arguments fall back to ``SHIPWRIGHT_LOG_JSON`` and ``SHIPWRIGHT_LOG_LEVEL``.

    Args:
        json_format: If True, output JSON logs (for production).
                    If False, output pretty console logs (for development).
        level: Minimum log level (default: INFO)
        logger_factory: Custom logger factory (for testing)

    Example:
        # Development (pretty console output)
        configure_logging(json_format=False, level=logging.DEBUG)

        # Production (JSON for log aggregation)
        configure_logging(json_format=True)
    """
    global _configured

    if json_format is None:
        json_format = os.getenv("SHIPWRIGHT_LOG_JSON", "false").lower() in ("1", "true", "yes")
    if level is None:
        level = os.getenv("SHIPWRIGHT_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    # Logs go to stderr; stdout carries the run summary
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory or structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    _configured = True


def reset_logging() -> None:
    """Drop the structlog configuration. Useful for testing."""
    global _configured
    structlog.reset_defaults()
    _configured = False


def get_logger(name: str) -> Any:
    """Get a structured logger for the given name.

    Configures logging with defaults on first use.

    Args:
        name: Logger name (typically __name__ or module path)

    Returns:
        A bound structlog logger.
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables included in all subsequent logs on this thread.

    Example:
        bind_context(run_id="01J...", build_number=42)
        logger.info("processing")  # Includes run_id and build_number
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables.

    Call this when a run finishes to prevent context leakage.
    """
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Remove specific context variables."""
    structlog.contextvars.unbind_contextvars(*keys)


def run_logger(run_id: str, build_number: int) -> Any:
    """Get a logger pre-bound with run context."""
    return get_logger("shipwright.run").bind(run_id=run_id, build_number=build_number)


def stage_logger(run_id: str, stage_name: str) -> Any:
    """Get a logger pre-bound with run and stage context."""
    return get_logger("shipwright.stage").bind(run_id=run_id, stage=stage_name)
