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
LOG_DIR = Path.home() / ".local" / "state" / "fluxdeck"
LOG_FILE = LOG_DIR / "fluxdeck.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5
RETENTION_DAYS = 30

_HANDLER_MARK = "_fluxdeck_handler"


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _cleanup_old_logs(log_dir: Path) -> None:
    """Delete log files older than RETENTION_DAYS."""
    if not log_dir.exists():
        return
    cutoff = datetime.now() - timedelta(days=RETENTION_DAYS)
    for log_file in log_dir.glob("fluxdeck.log*"):
        try:
            if datetime.fromtimestamp(log_file.stat().st_mtime) < cutoff:
                log_file.unlink()
        except OSError:
            continue  # raced with rotation or another process


def _file_handler(log_dir: Path) -> logging.Handler:
    """Rotating JSON file handler that captures everything."""
    log_dir.mkdir(parents=True, exist_ok=True)
    _cleanup_old_logs(log_dir)

    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE.name,
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
    return file_handler


def configure_logging(
    verbose: bool = False,
    debug: bool = False,
    json_output: bool = False,
    *,
    log_dir: Path | None = LOG_DIR,
) -> None:
    """Configure structured logging for fluxdeck.

    Logs go to stderr and to ``~/.local/state/fluxdeck/fluxdeck.log`` with
    rotation (10MB max, 5 backups) and retention cleanup (30 days).
    Calling it again replaces the handlers a previous call installed.

    Args:
        verbose: Enable verbose (INFO level) console output.
        debug: Enable debug mode (DEBUG level).
        json_output: Render console logs as JSON.
        log_dir: Directory for the file log; None disables it.
    """
    if debug:
        log_level = logging.DEBUG
    elif verbose:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING

    shared_processors = _shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=debug),
        )
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    handlers: list[logging.Handler] = [console_handler]
    if log_dir is not None:
        handlers.append(_file_handler(log_dir))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, _HANDLER_MARK, False):
            root_logger.removeHandler(existing)
            existing.close()
    for handler in handlers:
        setattr(handler, _HANDLER_MARK, True)
        root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)  # handlers filter

    # Silence urllib3 connection chatter from the kubernetes client
    logging.getLogger("urllib3").setLevel(max(log_level, logging.INFO))


def get_logger(name: str | None = None, **initial_context: Any) -> Any:
    """Get a structlog logger with optional initial context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
