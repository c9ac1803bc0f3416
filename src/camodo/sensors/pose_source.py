"""Pose stream with a shared interpolation cache."""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

from ..errors import PoseTimeoutError
from .buffer import TimestampedBuffer

T = TypeVar("T")


class SynchronizedPoseSource(Generic[T]):
    """A raw pose buffer plus a cache of poses interpolated at image times.

    Several acquisition pipelines (one per camera) share one instance per
    pose stream. Images from different cameras are often captured at the
    same instant, so the first pipeline to interpolate a timestamp stores
    the result and the others reuse it.

    The cache lock is held only while checking or inserting a cache entry,
    never while waiting for the producer to deliver straddling samples.
    """

    def __init__(
        self,
        buffer: TimestampedBuffer[T],
        name: str = "pose",
        cache_capacity: int = 1000,
    ) -> None:
        """Initialize pose source.

        Args:
            buffer: Raw sample buffer filled by the pose producer
            name: Human-readable stream name used in diagnostics
            cache_capacity: Number of interpolated poses to remember
        """
        self._buffer = buffer
        self._name = name
        self._cache: TimestampedBuffer[T] = TimestampedBuffer(capacity=cache_capacity)
        self._lock = threading.Lock()

    def lookup(self, timestamp_ns: int, timeout: float) -> T:
        """Return the pose at timestamp_ns, waiting for the producer if needed.

        Args:
            timestamp_ns: Image timestamp
            timeout: Maximum time to wait for straddling samples, in seconds

        Returns:
            Cached or freshly interpolated pose

        Raises:
            PoseTimeoutError: If no pose could be interpolated in time
        """
        with self._lock:
            cached = self._cache.find(timestamp_ns)
        if cached is not None:
            return cached

        pose = self._buffer.wait_for_interpolation(timestamp_ns, timeout)
        if pose is None:
            raise PoseTimeoutError(self._name, timestamp_ns, timeout)

        with self._lock:
            cached = self._cache.find(timestamp_ns)
            if cached is not None:
                return cached
            self._cache.push(timestamp_ns, pose)

        return pose

    def current(self) -> T | None:
        """Return the most recent raw sample."""
        return self._buffer.current()

    def empty(self) -> bool:
        """Return True if the producer has not delivered any sample yet."""
        return self._buffer.empty()

    def push(self, timestamp_ns: int, sample: T) -> None:
        """Forward a producer sample to the raw buffer."""
        self._buffer.push(timestamp_ns, sample)

    @property
    def buffer(self) -> TimestampedBuffer[T]:
        """Return the raw sample buffer."""
        return self._buffer

    @property
    def name(self) -> str:
        """Return the stream name."""
        return self._name
