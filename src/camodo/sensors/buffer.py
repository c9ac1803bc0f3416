"""Thread-safe timestamped sensor buffer with interpolation."""

from __future__ import annotations

import bisect
import threading
import time
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

Interpolator = Callable[[T, T, int], T]


class TimestampedBuffer(Generic[T]):
    """Bounded, timestamp-ordered buffer shared between threads.

    Producers push samples (usually in timestamp order, but late samples are
    inserted in place); consumers query the most recent sample, an exact
    timestamp, or a sample interpolated between the two samples straddling
    a query time. When the capacity is exceeded the oldest samples are
    dropped.

    Every operation holds the internal lock only for the duration of the
    call. ``wait_for_interpolation`` waits on a condition variable that is
    notified by ``push``, so a consumer blocks until either straddling
    samples exist or its deadline passes.
    """

    def __init__(
        self,
        capacity: int = 1000,
        interpolator: Interpolator | None = None,
    ) -> None:
        """Initialize buffer.

        Args:
            capacity: Maximum number of samples retained
            interpolator: Function (before, after, timestamp_ns) -> sample.
                Required for interpolate() and wait_for_interpolation().
        """
        if capacity < 1:
            raise ValueError(f"Capacity must be positive, got {capacity}")

        self._capacity = capacity
        self._interpolator = interpolator
        self._timestamps: list[int] = []
        self._items: list[T] = []
        self._condition = threading.Condition()

    def push(self, timestamp_ns: int, item: T) -> None:
        """Insert a sample, keeping the buffer sorted by timestamp."""
        with self._condition:
            if not self._timestamps or timestamp_ns >= self._timestamps[-1]:
                self._timestamps.append(timestamp_ns)
                self._items.append(item)
            else:
                idx = bisect.bisect_right(self._timestamps, timestamp_ns)
                self._timestamps.insert(idx, timestamp_ns)
                self._items.insert(idx, item)

            overflow = len(self._timestamps) - self._capacity
            if overflow > 0:
                del self._timestamps[:overflow]
                del self._items[:overflow]

            self._condition.notify_all()

    def current(self) -> T | None:
        """Return the most recent sample, or None if the buffer is empty."""
        with self._condition:
            return self._items[-1] if self._items else None

    def find(self, timestamp_ns: int) -> T | None:
        """Return the sample with exactly this timestamp, if present."""
        with self._condition:
            idx = bisect.bisect_left(self._timestamps, timestamp_ns)
            if idx < len(self._timestamps) and self._timestamps[idx] == timestamp_ns:
                return self._items[idx]
            return None

    def interpolate(self, timestamp_ns: int) -> T | None:
        """Interpolate a sample at a timestamp.

        Returns:
            The exact sample if one exists, an interpolated sample if the
            timestamp lies between two buffered samples, otherwise None.
        """
        with self._condition:
            return self._interpolate_locked(timestamp_ns)

    def wait_for_interpolation(
        self,
        timestamp_ns: int,
        timeout: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> T | None:
        """Block until a sample can be interpolated at timestamp_ns.

        Args:
            timestamp_ns: Query timestamp
            timeout: Maximum time to wait in seconds
            clock: Monotonic clock in seconds

        Returns:
            The interpolated sample, or None if the deadline passed first.
        """
        deadline = clock() + timeout
        with self._condition:
            while True:
                item = self._interpolate_locked(timestamp_ns)
                if item is not None:
                    return item

                remaining = deadline - clock()
                if remaining <= 0.0:
                    return None
                self._condition.wait(remaining)

    def _interpolate_locked(self, timestamp_ns: int) -> T | None:
        if self._interpolator is None:
            raise RuntimeError("TimestampedBuffer has no interpolator")

        if not self._timestamps:
            return None
        if timestamp_ns < self._timestamps[0] or timestamp_ns > self._timestamps[-1]:
            return None

        idx = bisect.bisect_left(self._timestamps, timestamp_ns)
        if self._timestamps[idx] == timestamp_ns:
            return self._items[idx]

        return self._interpolator(self._items[idx - 1], self._items[idx], timestamp_ns)

    def empty(self) -> bool:
        """Return True if no samples are buffered."""
        with self._condition:
            return not self._items

    def clear(self) -> None:
        """Drop all samples."""
        with self._condition:
            self._timestamps.clear()
            self._items.clear()

    @property
    def capacity(self) -> int:
        """Return maximum number of retained samples."""
        return self._capacity

    def __len__(self) -> int:
        """Return number of buffered samples."""
        with self._condition:
            return len(self._items)
