"""
Logging Configuration Module

Sets up the ``claude_gwt`` logger: a rich console handler plus an optional
rotating file handler. Structured context is passed by callers as
``extra={"context": {...}}`` and appended to the rendered message.
"""

import json
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "claude_gwt"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

_HANDLER_MARKER = "_claude_gwt_handler"


class ContextFormatter(logging.Formatter):
    """Appends the record's ``context`` mapping as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "context", None)
        if context:
            message = f"{message} {json.dumps(context, default=str, sort_keys=True)}"
        return message


def setup_logging(level: Union[str, int] = "INFO",
                  log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Configure the package logger. Safe to call more than once.

    Args:
        level: Logging level name or number
        log_file: Optional path for a rotating log file (10 MiB x 5)

    Returns:
        The configured ``claude_gwt`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(rich_tracebacks=True, show_path=False)
    console_handler.setLevel(level)
    console_handler.setFormatter(ContextFormatter("%(message)s"))
    setattr(console_handler, _HANDLER_MARKER, True)
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(ContextFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
