"""Tests for PerformanceTracker."""

import pytest

from branchlens_core.utils.timing import PerformanceTracker


def test_timed_records_operation(mocker):
    mocker.patch("branchlens_core.utils.timing.time.monotonic", side_effect=[10.0, 10.5, 12.0])
    tracker = PerformanceTracker()
    with tracker.timed("git_operations"):
        pass
    assert tracker.timings == {"git_operations": 0.5}
    assert tracker.total_seconds == 2.0
    assert not tracker.has_active_timers


def test_timings_are_in_completion_order():
    tracker = PerformanceTracker()
    tracker.start("outer")
    with tracker.timed("inner"):
        pass
    tracker.stop("outer")
    assert list(tracker.timings) == ["inner", "outer"]


def test_stop_without_start_raises():
    with pytest.raises(RuntimeError):
        PerformanceTracker().stop("never")


def test_double_start_raises():
    tracker = PerformanceTracker()
    tracker.start("op")
    with pytest.raises(RuntimeError):
        tracker.start("op")
    assert tracker.has_active_timers


def test_timed_stops_on_exception():
    tracker = PerformanceTracker()
    with pytest.raises(ValueError):
        with tracker.timed("failing"):
            raise ValueError("boom")
    assert "failing" in tracker.timings
    assert not tracker.has_active_timers


def test_reset():
    tracker = PerformanceTracker()
    with tracker.timed("op"):
        pass
    tracker.reset()
    assert tracker.timings == {}
    assert tracker.total_seconds == 0.0


def test_timings_returns_copy():
    tracker = PerformanceTracker()
    with tracker.timed("op"):
        pass
    tracker.timings.clear()
    assert "op" in tracker.timings
