"""Tests for the timestamped buffer, pose sources and the image channel."""

import threading

import numpy as np
import pytest

from camodo.errors import PoseTimeoutError
from camodo.geometry import Odometry
from camodo.sensors import SingleSlotChannel, SynchronizedPoseSource, TimestampedBuffer


@pytest.fixture
def odometry_buffer() -> TimestampedBuffer:
    """Odometry buffer with samples at t = 0, 100, 200."""
    buffer = TimestampedBuffer(capacity=10, interpolator=Odometry.interpolate)
    for i in range(3):
        buffer.push(i * 100, Odometry(timestamp_ns=i * 100, x=float(i)))
    return buffer


class TestTimestampedBuffer:
    """Test suite for TimestampedBuffer."""

    def test_current_is_latest(self, odometry_buffer: TimestampedBuffer):
        """Test that current() returns the most recent sample."""
        assert odometry_buffer.current().x == 2.0
        assert len(odometry_buffer) == 3

    def test_late_sample_inserted_in_order(self, odometry_buffer: TimestampedBuffer):
        """Test that an out-of-order push keeps the buffer sorted."""
        odometry_buffer.push(50, Odometry(timestamp_ns=50, x=10.0))

        assert odometry_buffer.current().x == 2.0
        assert odometry_buffer.find(50).x == 10.0

    def test_capacity_drops_oldest(self):
        """Test that the oldest samples are evicted beyond capacity."""
        buffer = TimestampedBuffer(capacity=2)
        for ts in (1, 2, 3):
            buffer.push(ts, ts)

        assert len(buffer) == 2
        assert buffer.find(1) is None
        assert buffer.find(3) == 3

    def test_interpolate_between_samples(self, odometry_buffer: TimestampedBuffer):
        """Test interpolation at a straddled timestamp."""
        pose = odometry_buffer.interpolate(150)

        assert pose.timestamp_ns == 150
        assert pose.x == pytest.approx(1.5)

    def test_interpolate_exact_sample(self, odometry_buffer: TimestampedBuffer):
        """Test that an exact timestamp returns the stored sample."""
        assert odometry_buffer.interpolate(100) is odometry_buffer.find(100)

    def test_interpolate_outside_range(self, odometry_buffer: TimestampedBuffer):
        """Test that timestamps outside the buffered span give None."""
        assert odometry_buffer.interpolate(-1) is None
        assert odometry_buffer.interpolate(201) is None

    def test_wait_for_interpolation_times_out(self, odometry_buffer: TimestampedBuffer):
        """Test that waiting past the deadline returns None."""
        assert odometry_buffer.wait_for_interpolation(500, timeout=0.05) is None

    def test_wait_for_interpolation_wakes_on_push(self, odometry_buffer: TimestampedBuffer):
        """Test that a producer push releases a waiting consumer."""
        timer = threading.Timer(
            0.05, odometry_buffer.push, args=(400, Odometry(timestamp_ns=400, x=4.0))
        )
        timer.start()
        try:
            pose = odometry_buffer.wait_for_interpolation(300, timeout=5.0)
        finally:
            timer.join()

        assert pose is not None
        assert pose.x == pytest.approx(3.0)

    def test_missing_interpolator_raises(self):
        """Test that interpolation requires an interpolator."""
        buffer = TimestampedBuffer()
        buffer.push(0, 0)

        with pytest.raises(RuntimeError, match="no interpolator"):
            buffer.interpolate(0)

    def test_invalid_capacity(self):
        """Test that a non-positive capacity is rejected."""
        with pytest.raises(ValueError, match="Capacity must be positive"):
            TimestampedBuffer(capacity=0)


class TestSynchronizedPoseSource:
    """Test suite for SynchronizedPoseSource."""

    def test_lookup_is_cached(self, odometry_buffer: TimestampedBuffer):
        """Test that repeated lookups at one timestamp share the result."""
        source = SynchronizedPoseSource(odometry_buffer, name="odometry")

        first = source.lookup(150, timeout=1.0)
        second = source.lookup(150, timeout=1.0)

        assert first is second
        assert first.x == pytest.approx(1.5)

    def test_lookup_timeout_raises(self, odometry_buffer: TimestampedBuffer):
        """Test that an unreachable timestamp raises PoseTimeoutError."""
        source = SynchronizedPoseSource(odometry_buffer, name="odometry")

        with pytest.raises(PoseTimeoutError, match="No odometry data") as exc_info:
            source.lookup(1000, timeout=0.05)

        assert exc_info.value.timestamp_ns == 1000

    def test_empty_and_push(self):
        """Test that pushes reach the raw buffer."""
        source = SynchronizedPoseSource(TimestampedBuffer(interpolator=Odometry.interpolate))
        assert source.empty()

        source.push(5, Odometry(timestamp_ns=5, x=1.0))

        assert not source.empty()
        assert source.current().x == 1.0


class TestSingleSlotChannel:
    """Test suite for SingleSlotChannel."""

    def test_take_returns_latest(self):
        """Test that unconsumed images are overwritten by newer ones."""
        channel = SingleSlotChannel()
        channel.put(np.zeros((2, 2), dtype=np.uint8), 1)
        channel.put(np.ones((2, 2), dtype=np.uint8), 2)

        assert channel.wait_for_data(0.01)
        stamped = channel.take()

        assert stamped.timestamp_ns == 2
        assert stamped.image[0, 0] == 1
        assert not channel.available

    def test_put_copies_image(self):
        """Test that the producer may reuse its buffer after put."""
        channel = SingleSlotChannel()
        image = np.zeros((2, 2), dtype=np.uint8)
        channel.put(image, 1)
        image[:] = 9

        assert channel.take().image[0, 0] == 0

    def test_wait_without_data(self):
        """Test that waiting on an empty channel times out."""
        channel = SingleSlotChannel()

        assert not channel.wait_for_data(0.01)
        assert channel.take() is None

    def test_processing_done_handshake(self):
        """Test the consumer acknowledgement seen by the producer."""
        channel = SingleSlotChannel()
        channel.put(np.zeros((2, 2), dtype=np.uint8), 1)

        assert not channel.wait_for_processing_done(0.01)

        channel.take()
        channel.notify_processing_done()

        assert channel.wait_for_processing_done(0.01)
