"""Unit tests for logging and timing utilities."""

import logging
import pytest
import sys
import time
from pathlib import Path

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from spacetime_mg.utils.logging_utils import (
    ColoredFormatter, LoggingContext, PACKAGE_LOGGER, debug_logging,
    get_logger, log_function_call, setup_logging, silence_logger
)
from spacetime_mg.utils.performance import LevelProfiler, Timer, TimingResult


@pytest.fixture
def scratch_logger():
    """Logger that is reset after the test."""
    logger = logging.getLogger("spacetime_mg_test_scratch")
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


class TestLogging:
    """Test cases for the logging helpers."""

    def test_setup_logging_with_file(self, tmp_path, scratch_logger):
        """Messages go to the configured log file."""
        log_file = tmp_path / "logs" / "run.log"

        logger = setup_logging(
            level=logging.DEBUG, log_file=log_file, console_output=False,
            logger_name=scratch_logger.name
        )
        logger.debug("slice defect")
        for handler in logger.handlers:
            handler.flush()

        assert logger is scratch_logger
        assert len(logger.handlers) == 1
        assert "slice defect" in log_file.read_text()

    def test_setup_logging_replaces_handlers(self, scratch_logger):
        """Repeated setup does not duplicate handlers."""
        setup_logging(logger_name=scratch_logger.name)
        setup_logging(logger_name=scratch_logger.name, include_performance=True)

        assert len(scratch_logger.handlers) == 1

    def test_colored_formatter_keeps_record(self):
        """Coloring does not leak into the original record."""
        formatter = ColoredFormatter("%(levelname)s %(message)s")
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)

        text = formatter.format(record)

        assert "\033[33m" in text
        assert record.levelname == "WARNING"

    def test_logging_context(self, scratch_logger):
        """The level is restored after the context."""
        scratch_logger.setLevel(logging.WARNING)

        with LoggingContext(logging.DEBUG, scratch_logger.name) as logger:
            assert logger.level == logging.DEBUG

        assert scratch_logger.level == logging.WARNING

    def test_silence_logger(self, caplog):
        """Nothing from the package logger gets through while silenced."""
        logger = logging.getLogger(f"{PACKAGE_LOGGER}.solvers")
        with caplog.at_level(logging.INFO):
            with silence_logger():
                logger.warning("hidden")
            logger.warning("visible")

        assert "hidden" not in caplog.text
        assert "visible" in caplog.text

    def test_debug_logging(self):
        """Debug output is enabled temporarily."""
        package = logging.getLogger(PACKAGE_LOGGER)
        original = package.level

        with debug_logging() as logger:
            assert logger is package
            assert logger.level == logging.DEBUG

        assert package.level == original

    def test_get_logger(self, scratch_logger):
        """get_logger optionally sets the level."""
        logger = get_logger(scratch_logger.name, logging.ERROR)

        assert logger is scratch_logger
        assert logger.level == logging.ERROR

    def test_log_function_call(self, caplog):
        """Calls are logged on entry, exit and failure."""

        @log_function_call
        def divide(a, b):
            return a / b

        with caplog.at_level(logging.DEBUG, logger=__name__):
            assert divide(6, 3) == 2
            with pytest.raises(ZeroDivisionError):
                divide(1, 0)

        assert "Entering" in caplog.text
        assert "Exception in" in caplog.text
        assert divide.__name__ == "divide"


class TestTiming:
    """Test cases for the timing helpers."""

    def test_timer(self):
        """The timer measures elapsed wall time."""
        with Timer("sleep") as timer:
            time.sleep(0.01)

        assert timer.elapsed_time >= 0.005

    def test_timer_not_started(self):
        """Stopping an unstarted timer is an error."""
        with pytest.raises(RuntimeError, match="not started"):
            Timer().stop()

    def test_timing_result(self):
        """Statistics summarize all measurements."""
        result = TimingResult("smooth")
        assert result.get_statistics() == {'count': 0}

        for value in [1.0, 2.0, 3.0]:
            result.add_time(value)

        stats = result.get_statistics()
        assert stats['count'] == 3
        assert stats['average'] == pytest.approx(2.0)
        assert stats['min'] == 1.0
        assert stats['max'] == 3.0
        assert stats['median'] == 2.0

    def test_level_profiler(self):
        """Operations are accumulated per level."""
        profiler = LevelProfiler()

        for _ in range(2):
            with profiler.time_level_operation(1, "smooth"):
                pass
        with profiler.time_level_operation(0, "coarse_solve"):
            pass

        summary = profiler.get_level_summary()
        assert set(summary) == {0, 1}
        assert profiler.timings[1]["smooth"].call_count == 2
        profiler.log_summary()

        profiler.reset()
        assert profiler.get_level_summary() == {}

    def test_profiler_times_failures(self):
        """An exception inside a timed block is still recorded."""
        profiler = LevelProfiler()

        with pytest.raises(ValueError):
            with profiler.time_level_operation(2, "restrict"):
                raise ValueError("boom")

        assert profiler.timings[2]["restrict"].call_count == 1
