"""Logging helpers for space-time solver runs."""

import functools
import logging
import sys
from pathlib import Path
from typing import Optional, Union
import time
from contextlib import contextmanager

PACKAGE_LOGGER = "spacetime_mg"


class ColoredFormatter(logging.Formatter):
    """Console formatter coloring the level name."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def format(self, record):
        # Work on a copy so file handlers sharing the record stay uncolored
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = (self.COLORS[record.levelname] +
                                record.levelname +
                                self.COLORS['RESET'])
        return super().format(record)


class PerformanceFilter(logging.Filter):
    """Adds the seconds elapsed since handler creation as ``elapsed_time``."""

    def __init__(self):
        super().__init__()
        self.start_time = time.time()

    def filter(self, record):
        record.elapsed_time = time.time() - self.start_time
        return True


def setup_logging(
    level: Union[str, int] = logging.INFO,
    format_string: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    console_output: bool = True,
    colored_console: bool = True,
    include_performance: bool = False,
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Configure handlers for solver runs.

    Args:
        level: Logging level
        format_string: Custom format string
        log_file: Path to log file (optional)
        console_output: Enable console output
        colored_console: Use colored console output
        include_performance: Prefix messages with the elapsed run time
        logger_name: Logger to configure, the root logger if None

    Returns:
        The configured logger
    """
    if format_string is None:
        if include_performance:
            format_string = '%(asctime)s - %(name)s - %(levelname)s - [%(elapsed_time).3fs] - %(message)s'
        else:
            format_string = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    target = logging.getLogger(logger_name)
    target.setLevel(level)
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.close()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        if colored_console:
            console_handler.setFormatter(ColoredFormatter(format_string))
        else:
            console_handler.setFormatter(logging.Formatter(format_string))
        if include_performance:
            console_handler.addFilter(PerformanceFilter())
        target.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(format_string))
        if include_performance:
            file_handler.addFilter(PerformanceFilter())
        target.addHandler(file_handler)

    logging.getLogger(__name__).info(
        f"Logging initialized: level={logging.getLevelName(target.level)}, "
        f"console={console_output}, file={log_file is not None}"
    )
    return target


def get_logger(name: str, level: Optional[Union[str, int]] = None) -> logging.Logger:
    """
    Get a logger, optionally overriding its level.

    Args:
        name: Logger name (typically __name__)
        level: Optional override level for this logger

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger


class LoggingContext:
    """Context manager for a temporary logging level."""

    def __init__(self, level: Union[str, int], logger_name: Optional[str] = None):
        """
        Initialize logging context.

        Args:
            level: Temporary logging level
            logger_name: Specific logger to modify (None for root)
        """
        self.new_level = level
        self.logger_name = logger_name
        self.original_level = None
        self.logger = None

    def __enter__(self):
        self.logger = logging.getLogger(self.logger_name)
        self.original_level = self.logger.level
        self.logger.setLevel(self.new_level)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.logger is not None and self.original_level is not None:
            self.logger.setLevel(self.original_level)


@contextmanager
def silence_logger(logger_name: str = PACKAGE_LOGGER):
    """Temporarily silence a logger, the package logger by default."""
    logger = logging.getLogger(logger_name)
    original_level = logger.level
    logger.setLevel(logging.CRITICAL + 1)
    try:
        yield logger
    finally:
        logger.setLevel(original_level)


@contextmanager
def debug_logging(logger_name: Optional[str] = PACKAGE_LOGGER):
    """Temporarily enable debug output, e.g. per-slice defect norms."""
    with LoggingContext(logging.DEBUG, logger_name) as logger:
        yield logger


def log_function_call(func):
    """Decorator logging entry, exit and elapsed time of a call."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        start_time = time.time()
        logger.debug(f"Entering {func.__qualname__}")

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            elapsed_time = time.time() - start_time
            logger.error(f"Exception in {func.__qualname__} after {elapsed_time:.3f}s: {e}")
            raise

        elapsed_time = time.time() - start_time
        logger.debug(f"Exiting {func.__qualname__} (elapsed: {elapsed_time:.3f}s)")
        return result

    return wrapper
