"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timedelta
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

# Log file configuration
LOG_DIR = Path.home() / ".local" / "state" / "cert-agent"
LOG_FILE = LOG_DIR / "cert-agent.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5
RETENTION_DAYS = 30

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _cleanup_old_logs() -> None:
    """Delete log files older than RETENTION_DAYS."""
    if not LOG_DIR.exists():
        return
    cutoff = datetime.now() - timedelta(days=RETENTION_DAYS)
    for log_file in LOG_DIR.glob("cert-agent.log*"):
        try:
            if datetime.fromtimestamp(log_file.stat().st_mtime) < cutoff:
                log_file.unlink()
        except OSError:
            pass  # Ignore errors during cleanup


def _setup_file_logging() -> None:
    """Set up rotating file handler for persistent logging."""
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Read-only root filesystems are common for in-cluster deployments.
        return

    _cleanup_old_logs()

    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=_shared_processors(),
        )
    )

    logging.getLogger().addHandler(file_handler)


def resolve_log_level(
    level: str | None = None,
    *,
    verbose: bool = False,
    debug: bool = False,
) -> int:
    """Resolve the effective log level.

    CLI flags take precedence over a configured level name.

    Args:
        level: Configured level name (e.g. "INFO").
        verbose: Enable INFO level output.
        debug: Enable DEBUG level output.

    Returns:
        A stdlib logging level.
    """
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if level:
        return _LEVELS.get(level.upper(), logging.INFO)
    return logging.WARNING


def configure_logging(
    verbose: bool = False,
    debug: bool = False,
    json_output: bool = False,
    level: str | None = None,
    file_logging: bool = True,
) -> None:
    """Configure structured logging for the agent.

    Logs are written to stdout and, when possible, to a rotating JSON file at
    ~/.local/state/cert-agent/cert-agent.log (10MB max, 5 backups, 30 days
    retention).

    Args:
        verbose: Enable verbose (INFO level) output.
        debug: Enable debug mode (DEBUG level).
        json_output: Output logs in JSON format (useful in-cluster).
        level: Configured level name, used when no flag is set.
        file_logging: Also write logs to the rotating log file.
    """
    log_level = resolve_log_level(level, verbose=verbose, debug=debug)
    shared_processors = _shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    if json_output:
        console_formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared_processors,
        )
    else:
        console_formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(
                    show_locals=debug,
                ),
            ),
            foreign_pre_chain=shared_processors,
        )
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Let handlers filter
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # The kubernetes client logs every watch reconnect at INFO.
    logging.getLogger("kubernetes").setLevel(logging.WARNING)

    if file_logging:
        _setup_file_logging()


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """Get a configured logger with optional initial context.

    Args:
        name: Logger name. If None, uses the calling module's name.
        **initial_context: Initial context variables to bind to the logger.

    Returns:
        A bound structlog logger.
    """
    logger: structlog.BoundLogger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
