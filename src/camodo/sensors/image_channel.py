"""Single-slot handoff of the latest camera image between threads."""

from __future__ import annotations

import threading
from dataclasses import dataclass

import numpy as np


@dataclass
class StampedImage:
    """An image together with its capture timestamp."""

    image: np.ndarray
    timestamp_ns: int


class SingleSlotChannel:
    """Double-buffered channel holding only the most recent image.

    The producer copies each new image into the back slot and then swaps
    it to the front, so a slow consumer never sees a half-written image
    and always gets the latest one (older unconsumed images are
    overwritten). The consumer acknowledges each image with
    ``notify_processing_done`` so a producer can pace itself.
    """

    def __init__(self) -> None:
        """Initialize empty channel."""
        self._condition = threading.Condition()
        self._slots: list[StampedImage | None] = [None, None]
        self._front = 0
        self._available = False
        self._processing_done = True

    def put(self, image: np.ndarray, timestamp_ns: int) -> None:
        """Publish a new image (producer side)."""
        with self._condition:
            back = 1 - self._front

        self._slots[back] = StampedImage(image=np.array(image, copy=True), timestamp_ns=timestamp_ns)

        with self._condition:
            self._front = back
            self._available = True
            self._processing_done = False
            self._condition.notify_all()

    def wait_for_data(self, timeout: float) -> bool:
        """Wait up to timeout seconds for an unconsumed image.

        Returns:
            True if an image is available
        """
        with self._condition:
            return self._condition.wait_for(lambda: self._available, timeout)

    def take(self) -> StampedImage | None:
        """Claim the front image and mark the slot as consumed.

        Returns:
            The latest image, or None if nothing was ever published
        """
        with self._condition:
            self._available = False
            return self._slots[self._front]

    def notify_processing_done(self) -> None:
        """Acknowledge that the consumer finished with the last image."""
        with self._condition:
            self._processing_done = True
            self._condition.notify_all()

    def wait_for_processing_done(self, timeout: float) -> bool:
        """Wait up to timeout seconds for the consumer acknowledgement (producer side)."""
        with self._condition:
            return self._condition.wait_for(lambda: self._processing_done, timeout)

    @property
    def available(self) -> bool:
        """Return True if an unconsumed image is waiting."""
        with self._condition:
            return self._available
