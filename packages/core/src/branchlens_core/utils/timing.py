"""Wall-clock timing of the reconciliation phases, shown by `--timing`."""

from __future__ import annotations

import time
from contextlib import contextmanager


class PerformanceTracker:
    """Records how long each named operation took.

    The total is measured from the first start() to now, so overlapping or
    untimed gaps between operations are still reflected in it.
    """

    def __init__(self):
        self._timings: dict[str, float] = {}
        self._started: dict[str, float] = {}
        self._total_start: float | None = None

    def start(self, name: str) -> None:
        if name in self._started:
            raise RuntimeError(f"Timer for operation {name!r} is already running.")
        now = time.monotonic()
        if self._total_start is None:
            self._total_start = now
        self._started[name] = now

    def stop(self, name: str) -> None:
        if name not in self._started:
            raise RuntimeError(f"Timer for operation {name!r} was not started.")
        self._timings[name] = time.monotonic() - self._started.pop(name)

    @contextmanager
    def timed(self, name: str):
        self.start(name)
        try:
            yield
        finally:
            self.stop(name)

    @property
    def timings(self) -> dict[str, float]:
        """Completed operations in the order they finished, in seconds."""
        return dict(self._timings)

    @property
    def total_seconds(self) -> float:
        if self._total_start is None:
            return 0.0
        return time.monotonic() - self._total_start

    @property
    def has_active_timers(self) -> bool:
        return bool(self._started)

    def reset(self) -> None:
        self._timings.clear()
        self._started.clear()
        self._total_start = None
