"""
Tests for Timer and timed().
"""

import pytest

from cohortsurv.core.compute.timing import Timer, timed


class TestTimer:
    """Accumulating timer with named sections."""

    def test_total_and_sections(self):
        timer = Timer()
        timer.start()
        with timer.section("newton_raphson"):
            sum(range(1000))
        timer.stop()

        result = timer.result()
        assert set(result) == {"total_seconds", "newton_raphson"}
        assert result["total_seconds"] >= result["newton_raphson"] >= 0.0

    def test_repeated_sections_accumulate(self):
        timer = Timer()
        timer.start()
        for _ in range(3):
            with timer.section("stratum"):
                pass
        timer.stop()
        assert len(timer.result()) == 2

    def test_section_recorded_on_error(self):
        timer = Timer()
        timer.start()
        with pytest.raises(ZeroDivisionError):
            with timer.section("failing"):
                1 / 0
        timer.stop()
        assert "failing" in timer.result()

    def test_stop_before_start(self):
        with pytest.raises(RuntimeError, match="before start"):
            Timer().stop()

    def test_result_before_stop(self):
        timer = Timer()
        timer.start()
        with pytest.raises(RuntimeError, match="before stop"):
            timer.result()


class TestTimed:
    def test_context_manager(self):
        with timed() as timer:
            sum(range(100))
        assert timer.result()["total_seconds"] >= 0.0
