"""Elapsed time accumulator used by instrumented programs.

Injected code only ever calls ``start()`` and ``stop()`` on class level
instances, and the report reads ``elapsed_ms`` and ``elapsed``.
"""

import threading
import time
from datetime import timedelta


class Stopwatch:
    """An accumulating, re-entrant stopwatch.

    Nested ``start()`` calls (a recursive routine timed by its own probe)
    only count the outermost interval, so recursion does not inflate the
    total.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._depth = 0
        self._started_at = 0.0
        self._total = 0.0

    def start(self):
        """Start timing, or enter one more nested level."""
        with self._lock:
            if self._depth == 0:
                self._started_at = time.perf_counter()
            self._depth += 1

    def stop(self):
        """Leave one level; the outermost stop adds the interval."""
        with self._lock:
            if self._depth == 0:
                return
            self._depth -= 1
            if self._depth == 0:
                self._total += time.perf_counter() - self._started_at

    def reset(self):
        """Clear the accumulated time and stop."""
        with self._lock:
            self._depth = 0
            self._started_at = 0.0
            self._total = 0.0

    @property
    def is_running(self):
        return self._depth > 0

    @property
    def elapsed_seconds(self):
        """Accumulated seconds, including a running interval."""
        with self._lock:
            total = self._total
            if self._depth > 0:
                total += time.perf_counter() - self._started_at
            return total

    @property
    def elapsed_ms(self):
        """Accumulated whole milliseconds."""
        return int(self.elapsed_seconds * 1000)

    @property
    def elapsed(self):
        """Accumulated time as a `timedelta`."""
        return timedelta(seconds=self.elapsed_seconds)

    def __repr__(self):
        return (
            f"Stopwatch(elapsed_ms={self.elapsed_ms}, "
            f"running={self.is_running})"
        )
