"""
Logging configuration for mangasync.

structlog renders both its own events and those of stdlib loggers, so
records from requests, SQLAlchemy or APScheduler come out in the same
format as the engine's key-value events.
"""

import logging
import os
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

NOISY_LOGGERS = ("urllib3", "requests", "apscheduler", "waitress")


def get_log_level(default: Optional[str] = None) -> str:
    """Get log level from environment."""
    return (default or os.getenv("LOG_LEVEL", "INFO")).upper()


def use_json_output() -> bool:
    """LOG_FORMAT=json switches the console renderer for a JSON one."""
    return os.getenv("LOG_FORMAT", "console").lower() == "json"


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level name; falls back to LOG_LEVEL
        json_output: Render JSON lines instead of coloured console output
    """
    if json_output is None:
        json_output = use_json_output()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if json_output:
        renderer: Processor = structlog.processors.JSONRenderer()
        final_processors = [structlog.processors.format_exc_info, renderer]
    else:
        final_processors = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta] + final_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    # Replace handlers so repeated setup does not duplicate output
    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, get_log_level(level), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


class SyncLogger:
    """
    Logger for one sync run.

    Every event carries the run id, plus whatever context was bound with
    bind() (the entity kind of a phase, for instance). Context is bound
    per call, so events from pool worker threads carry it too.
    """

    def __init__(self, sync_run_id: Optional[str] = None, **context: Any):
        self.logger = get_logger("mangasync.sync")
        self.sync_run_id = sync_run_id
        self.context: Dict[str, Any] = context

    def bind(self, **context: Any) -> "SyncLogger":
        """Child logger with extra context."""
        return SyncLogger(self.sync_run_id, **{**self.context, **context})

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        log_method = getattr(self.logger, level)

        context = dict(self.context)
        if self.sync_run_id:
            context["sync_run_id"] = self.sync_run_id

        with structlog.contextvars.bound_contextvars(**context):
            log_method(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("info", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("warning", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("error", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("debug", message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an exception with traceback."""
        self._log("error", message, exc_info=True, **kwargs)
