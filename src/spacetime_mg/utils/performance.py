"""Timing utilities for space-time solvers."""

import time
import numpy as np
from typing import Dict, List
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class TimingResult:
    """Container for timing results."""
    name: str
    total_time: float = 0.0
    call_count: int = 0
    average_time: float = field(init=False)
    min_time: float = field(default=float('inf'))
    max_time: float = field(default=0.0)
    times: List[float] = field(default_factory=list)

    def __post_init__(self):
        """Calculate average time."""
        self.average_time = self.total_time / max(1, self.call_count)

    def add_time(self, elapsed_time: float) -> None:
        """Add a new timing measurement."""
        self.total_time += elapsed_time
        self.call_count += 1
        self.min_time = min(self.min_time, elapsed_time)
        self.max_time = max(self.max_time, elapsed_time)
        self.times.append(elapsed_time)
        self.average_time = self.total_time / self.call_count

    def get_statistics(self) -> Dict[str, float]:
        """Get timing statistics."""
        if not self.times:
            return {'count': 0}

        times_array = np.array(self.times)
        return {
            'count': self.call_count,
            'total': self.total_time,
            'average': self.average_time,
            'min': self.min_time,
            'max': self.max_time,
            'median': float(np.median(times_array)),
        }


class Timer:
    """Simple timer for measuring elapsed time."""

    def __init__(self, name: str = "Timer"):
        """Initialize timer."""
        self.name = name
        self.start_time = None
        self.end_time = None
        self.elapsed_time = None

    def start(self) -> 'Timer':
        """Start the timer."""
        self.start_time = time.time()
        self.end_time = None
        self.elapsed_time = None
        return self

    def stop(self) -> float:
        """Stop the timer and return elapsed time."""
        if self.start_time is None:
            raise RuntimeError("Timer not started")

        self.end_time = time.time()
        self.elapsed_time = self.end_time - self.start_time
        return self.elapsed_time

    def __enter__(self) -> 'Timer':
        """Enter context manager."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager."""
        self.stop()
        logger.debug(f"{self.name}: {self.elapsed_time:.3f}s")


class LevelProfiler:
    """Accumulates timings of per-level multigrid operations."""

    def __init__(self):
        self.timings: Dict[int, Dict[str, TimingResult]] = {}

    @contextmanager
    def time_level_operation(self, level: int, operation: str):
        """Context manager timing ``operation`` on ``level``."""
        timer = Timer(f"level_{level}_{operation}").start()
        try:
            yield timer
        finally:
            elapsed = timer.stop()
            operations = self.timings.setdefault(level, {})
            if operation not in operations:
                operations[operation] = TimingResult(name=operation)
            operations[operation].add_time(elapsed)

    def get_level_summary(self) -> Dict[int, Dict[str, float]]:
        """Total time per level and operation."""
        return {level: {name: result.total_time for name, result in operations.items()}
                for level, operations in self.timings.items()}

    def log_summary(self) -> None:
        """Log level-wise timings."""
        summary = self.get_level_summary()
        if not summary:
            return
        logger.info("Level-wise Timings:")
        for level in sorted(summary.keys()):
            operations = summary[level]
            total_level_time = sum(operations.values())
            logger.info(f"  Level {level}: {total_level_time:.3f}s total")
            for op, time_val in sorted(operations.items()):
                pct = (time_val / total_level_time * 100) if total_level_time > 0 else 0
                logger.info(f"    {op:15s}: {time_val:8.3f}s ({pct:5.1f}%)")

    def reset(self) -> None:
        self.timings.clear()
