"""
Instrumentation collector handed to networks and layers by reference.
"""
import threading
import time
from contextlib import contextmanager


class Metrics:
    """
    Counts events and accumulates wall-clock timings by name.

    A single instance may be shared by every layer of a network, including
    the worker threads of a parallel convolution, so all updates go through
    a lock.
    """

    def __init__(self):
        self.counters = {}
        self.timings = {}
        self._lock = threading.Lock()

    def count(self, name, n=1):
        """Increment counter `name` by `n`."""
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + n

    def add_time(self, name, seconds):
        """Add `seconds` to timing `name`."""
        with self._lock:
            self.timings[name] = self.timings.get(name, 0.0) + seconds

    @contextmanager
    def timer(self, name):
        """Time the enclosed block and add it to timing `name`."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.add_time(name, time.perf_counter() - start)

    def snapshot(self):
        """Return a copy of all counters and timings."""
        with self._lock:
            return {'counters': dict(self.counters),
                    'timings': dict(self.timings)}

    def reset(self):
        """Clear all counters and timings."""
        with self._lock:
            self.counters.clear()
            self.timings.clear()

    def __repr__(self):
        return f"Metrics(counters={self.counters}, timings={self.timings})"
