"""Thread-safe sensor data plumbing shared between producers and pipelines."""

from .buffer import TimestampedBuffer
from .image_channel import SingleSlotChannel, StampedImage
from .pose_source import SynchronizedPoseSource

__all__ = [
    "TimestampedBuffer",
    "SynchronizedPoseSource",
    "SingleSlotChannel",
    "StampedImage",
]
