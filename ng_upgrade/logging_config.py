"""
Logging setup for upgrade runs.

Everything the orchestrator logs goes through the ``ng_upgrade`` logger
hierarchy. ``setup_logging`` attaches console and file handlers to it from a
``LoggingConfig``; handlers added by anything else are left in place.
"""

import logging
import sys
from typing import IO, Dict, Optional

from .exceptions import ConfigurationError

LOGGER_NAME = 'ng_upgrade'

CONSOLE_FORMAT = '%(levelname)s - %(message)s'
DETAILED_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'

# Marks handlers owned by setup_logging so a repeat call replaces only those
_HANDLER_TAG = '_ng_upgrade_handler'

_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps the level name in an ANSI color."""

    RESET = '\033[0m'
    LEVEL_COLORS: Dict[int, str] = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if not (self.use_colors and color):
            return super().format(record)

        # Other handlers share the record; color a copy
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def _tag(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, verbose: bool = False,
                  stream: Optional[IO[str]] = None) -> logging.Logger:
    """
    Configure the package logger for an upgrade run.

    The file handler, when there is one, records everything down to DEBUG
    while the console follows ``level``. Colors are used only when the
    console stream is a terminal.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a log file to append to
        verbose: Use the detailed format on the console too
        stream: Console stream, stdout by default

    Returns:
        The package logger

    Raises:
        ConfigurationError: If the level name is unknown
    """
    level_name = str(level).upper()
    if level_name not in _LEVELS:
        raise ConfigurationError(f"Invalid logging level '{level}' (expected one of: {', '.join(_LEVELS)})")
    numeric_level = getattr(logging, level_name)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in [h for h in logger.handlers if getattr(h, _HANDLER_TAG, False)]:
        logger.removeHandler(handler)
        handler.close()

    stream = stream or sys.stdout
    isatty = getattr(stream, 'isatty', None)
    console_handler = _tag(logging.StreamHandler(stream))
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(ColoredFormatter(
        DETAILED_FORMAT if verbose else CONSOLE_FORMAT,
        use_colors=bool(isatty and isatty()),
    ))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = _tag(logging.FileHandler(log_file, encoding='utf-8'))
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
        logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG if log_file else numeric_level)
    logger.debug(f"Logging configured at {level_name}" + (f", writing to {log_file}" if log_file else ""))
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a component, under the package logger."""
    return logging.getLogger(f'{LOGGER_NAME}.{name}')
