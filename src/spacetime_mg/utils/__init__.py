"""Logging and timing utilities."""

from .logging_utils import (
    setup_logging, get_logger, LoggingContext, silence_logger, debug_logging, log_function_call
)
from .performance import Timer, TimingResult, LevelProfiler

__all__ = [
    "setup_logging",
    "get_logger",
    "LoggingContext",
    "silence_logger",
    "debug_logging",
    "log_function_call",
    "Timer",
    "TimingResult",
    "LevelProfiler",
]
