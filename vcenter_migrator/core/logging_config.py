"""Logging configuration for vCenter Migrator with dual output (console + files)."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog


def setup_logging(
    log_dir: Path | str = Path("logs"),
    log_level: str | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Setup dual logging system: console + files with automatic truncation.

    Creates two log files:
    - migrator.log: Sessions, commands, inventory and workflow internals
    - activity.log: Progress events emitted for the user (one line per event)

    Args:
        log_dir: Directory for log files
        log_level: Log level (defaults to LOG_LEVEL env var or INFO)
        max_file_size_mb: Max file size before truncation (no backup files kept)
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    log_level_num = getattr(logging, log_level.upper(), logging.INFO)
    max_bytes = max_file_size_mb * 1024 * 1024

    # Clear any existing handlers to prevent duplicates
    logging.getLogger().handlers.clear()

    main_file_handler = RotatingFileHandler(
        log_dir / "migrator.log",
        maxBytes=max_bytes,
        backupCount=0,  # Don't keep old files, just truncate
        encoding="utf-8",
    )
    main_file_handler.setLevel(log_level_num)

    activity_file_handler = RotatingFileHandler(
        log_dir / "activity.log",
        maxBytes=max_bytes,
        backupCount=0,
        encoding="utf-8",
    )
    activity_file_handler.setLevel(log_level_num)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level_num)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_num)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(main_file_handler)

    # Activity events also land in activity.log
    activity_logger = logging.getLogger("activity")
    activity_logger.addHandler(activity_file_handler)
    activity_logger.propagate = True

    from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )
    console_handler.setFormatter(ProcessorFormatter(processor=renderer))
    main_file_handler.setFormatter(ProcessorFormatter(processor=structlog.processors.JSONRenderer()))
    activity_file_handler.setFormatter(
        ProcessorFormatter(processor=structlog.processors.JSONRenderer())
    )

    logger = structlog.get_logger("migrator")
    logger.info(
        "Logging system initialized",
        log_dir=str(log_dir.absolute()),
        log_level=log_level,
        max_file_size_mb=max_file_size_mb,
    )


def get_logger() -> Any:
    """Get the general application logger (writes to migrator.log)."""
    return structlog.get_logger("migrator")


def get_activity_logger() -> Any:
    """Get the activity logger (writes to activity.log as well)."""
    return structlog.get_logger("activity")
