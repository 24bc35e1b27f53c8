"""Bounded console output buffer shared by the process supervisor."""

import threading
from collections import deque

DEFAULT_LOG_CAPACITY = 100


class LogRing:
    """Fixed-capacity FIFO of raw output chunks.

    Appends from reader threads and snapshot reads from request threads
    serialize on one lock; ``snapshot()`` always returns a fresh list.
    """

    def __init__(self, capacity=DEFAULT_LOG_CAPACITY):
        capacity = int(capacity)
        if capacity < 1:
            raise ValueError("log capacity must be at least 1")
        self.capacity = capacity
        self._lines = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, text):
        """Store one chunk, evicting the oldest entry when full."""
        with self._lock:
            self._lines.append(str(text))

    def snapshot(self):
        """Return oldest-first copy of the buffered chunks."""
        with self._lock:
            return list(self._lines)

    def clear(self):
        with self._lock:
            self._lines.clear()

    def __len__(self):
        with self._lock:
            return len(self._lines)
