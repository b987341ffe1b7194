"""Stage timing for controller runs."""

import time
from contextlib import contextmanager


class MetricsCollector:
    """Collects per-stage latency (timing only)."""

    def __init__(self):
        self._start_times: dict[str, float] = {}
        self.totals: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        self._start_times[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        """Stop a named timer, add it to the stage total and return elapsed time."""
        if name not in self._start_times:
            return 0.0
        elapsed = time.perf_counter() - self._start_times.pop(name)
        self.totals[name] = self.totals.get(name, 0.0) + elapsed
        return elapsed

    @contextmanager
    def timed(self, name: str):
        """Time the enclosed block under ``name``."""
        self.start_timer(name)
        try:
            yield
        finally:
            self.stop_timer(name)

    def total(self, name: str) -> float:
        return self.totals.get(name, 0.0)
