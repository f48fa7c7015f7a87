"""Centralised logging setup for the Boxy engine."""

from __future__ import annotations

import logging
import sys
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.types import FilteringBoundLogger

from boxy.core.config import BOXY_HOME

_CONFIGURED = False
_LOG_FILE: Path | None = None

MAX_LOG_BYTES = 2_000_000
MAX_LOG_LINES = 2000


def sanitise_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Drop None values so renderers never see them.

    Args:
        logger: The logger instance.
        method_name: The name of the method called on the logger.
        event_dict: The event dictionary to sanitise.

    Returns:
        The sanitised event dictionary.
    """
    return {k: v for k, v in event_dict.items() if v is not None}


def configure_logging(
    level: str = "INFO", log_file: Path | None = None, enable_console: bool = False
) -> None:
    """Configure logging for the Boxy engine.

    Safe to call more than once; only the first call takes effect.

    Args:
        level: The logging level as a string (e.g., "DEBUG", "INFO").
        log_file: Optional path to a log file for file logging.
        enable_console: Whether to enable console logging.
    """
    global _CONFIGURED, _LOG_FILE
    if _CONFIGURED:
        return

    if log_file is None:
        log_file = BOXY_HOME / "logs" / "boxy.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    _LOG_FILE = log_file

    numeric_level = getattr(logging, level.upper())

    file_handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_BYTES, backupCount=2)
    file_handler.setLevel(numeric_level)

    shared_processors = [
        sanitise_context,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(console_handler)

        structlog.configure(
            processors=shared_processors
            + [
                structlog.processors.ExceptionRenderer(),
                structlog.dev.ConsoleRenderer(colors=True),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=shared_processors
            + [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()],
            wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

    logging.root.setLevel(numeric_level)
    logging.root.addHandler(file_handler)

    _CONFIGURED = True


def get_logger(name: str = "boxy") -> FilteringBoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Optional name for the logger, typically the module name.

    Returns:
        A structlog FilteringBoundLogger instance.

    Usage:
        log = get_logger(__name__)
        log.info("job_finished", manager="npm", job_id=job_id, duration_ms=123)

    Standard context keys:
        - manager (str): Package manager name
        - key (str): Cache or resource key
        - package (str): Name of the package
        - job_id (str): Job identifier
        - duration_ms (int): Operation duration in milliseconds
        - error (str): Error message if applicable
    """
    return structlog.get_logger(name)


def read_logs(limit: int = MAX_LOG_LINES, log_file: Path | None = None) -> list[str]:
    """Read the newest non-empty lines from the log file.

    Rotated backups are read oldest first so the result stays chronological.

    Args:
        limit: Maximum number of lines to return.
        log_file: Log file to read, defaults to the configured one.

    Returns:
        Up to ``limit`` log lines, oldest first.
    """
    path = log_file or _LOG_FILE
    if path is None:
        return []

    candidates = [path.with_name(f"{path.name}.{i}") for i in (2, 1)] + [path]
    lines: deque[str] = deque(maxlen=max(limit, 0))

    for candidate in candidates:
        if not candidate.exists():
            continue
        with candidate.open(encoding="utf-8", errors="replace") as fh:
            for line in fh:
                if line.strip():
                    lines.append(line.rstrip("\n"))

    return list(lines)
