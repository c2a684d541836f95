"""
Fixed-capacity, thread-safe ring buffer for log lines.

The log viewer keeps at most `capacity` formatted lines in memory. When the
buffer is full the oldest line is overwritten and a dropped counter is
incremented, so the UI can tell the user how much history was lost.

Thread Safety:
  - Every public method holds a single Lock for its whole body
  - lines() returns a fresh list; callers own it
"""

import threading
from typing import Iterable, List

DEFAULT_CAPACITY = 5000


class RingBuffer:
    """Circular buffer of strings with O(1) append and overflow accounting."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        self._capacity = capacity
        self._lines: List[str] = [""] * capacity
        self._head = 0  # index of the oldest line
        self._count = 0
        self._dropped = 0
        self._lock = threading.Lock()

    def _append_unlocked(self, line: str) -> None:
        if self._count < self._capacity:
            self._lines[(self._head + self._count) % self._capacity] = line
            self._count += 1
        else:
            self._lines[self._head] = line
            self._head = (self._head + 1) % self._capacity
            self._dropped += 1

    def append(self, line: str) -> None:
        with self._lock:
            self._append_unlocked(line)

    def append_batch(self, lines: Iterable[str]) -> None:
        """Append several lines under one lock acquisition."""
        with self._lock:
            for line in lines:
                self._append_unlocked(line)

    def lines(self) -> List[str]:
        """Current contents, oldest first."""
        with self._lock:
            return [self._lines[(self._head + i) % self._capacity] for i in range(self._count)]

    def __len__(self) -> int:
        with self._lock:
            return self._count

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def clear(self) -> None:
        """Empty the buffer, zero the dropped counter and release the old strings."""
        with self._lock:
            self._head = 0
            self._count = 0
            self._dropped = 0
            self._lines = [""] * self._capacity
