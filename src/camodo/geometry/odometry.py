"""Proprioceptive pose samples: wheel odometry and GPS/INS."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

from .pose import SE3


def _wrap_angle(angle: float) -> float:
    """Wrap an angle to [-pi, pi)."""
    return float((angle + np.pi) % (2.0 * np.pi) - np.pi)


@dataclass
class Odometry:
    """Vehicle pose sample from the odometry source.

    The pose is T_world_body: position in the world (odometry) frame and a
    Z-Y-X (yaw, pitch, roll) attitude. Planar wheel odometry leaves z,
    pitch and roll at zero.

    Attributes:
        timestamp_ns: Sample timestamp in nanoseconds
        x, y, z: Position in the odometry world frame
        yaw, pitch, roll: Attitude angles in radians
    """

    timestamp_ns: int
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    @property
    def timestamp(self) -> int:
        """Timestamp used by TimestampedBuffer ordering."""
        return self.timestamp_ns

    @property
    def position(self) -> np.ndarray:
        """Return (x, y, z) position."""
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    @property
    def attitude(self) -> np.ndarray:
        """Return (yaw, pitch, roll) in radians."""
        return np.array([self.yaw, self.pitch, self.roll], dtype=np.float64)

    @property
    def rotation(self) -> np.ndarray:
        """Return the body-to-world rotation Rz(yaw) @ Ry(pitch) @ Rx(roll)."""
        return Rotation.from_euler(
            "ZYX", [self.yaw, self.pitch, self.roll]
        ).as_matrix()

    def to_se3(self) -> SE3:
        """Return the pose as T_world_body."""
        return SE3(rotation=self.rotation, translation=self.position)

    def to_matrix(self) -> np.ndarray:
        """Return the pose as a 4x4 T_world_body matrix."""
        return self.to_se3().to_matrix()

    @staticmethod
    def interpolate(before: Odometry, after: Odometry, timestamp_ns: int) -> Odometry:
        """Linearly interpolate between two samples that straddle a timestamp.

        Angles are interpolated along the shortest arc.

        Args:
            before: Sample at or before timestamp_ns
            after: Sample at or after timestamp_ns
            timestamp_ns: Query timestamp

        Returns:
            Interpolated Odometry stamped with timestamp_ns
        """
        span = after.timestamp_ns - before.timestamp_ns
        alpha = 0.0 if span == 0 else (timestamp_ns - before.timestamp_ns) / span

        def lerp(a: float, b: float) -> float:
            return a + alpha * (b - a)

        def lerp_angle(a: float, b: float) -> float:
            return _wrap_angle(a + alpha * _wrap_angle(b - a))

        return Odometry(
            timestamp_ns=timestamp_ns,
            x=lerp(before.x, after.x),
            y=lerp(before.y, after.y),
            z=lerp(before.z, after.z),
            yaw=lerp_angle(before.yaw, after.yaw),
            pitch=lerp_angle(before.pitch, after.pitch),
            roll=lerp_angle(before.roll, after.roll),
        )


@dataclass
class GpsInsPose:
    """Full 6-DoF pose sample from a GPS/INS unit (T_world_body)."""

    timestamp_ns: int
    pose: SE3

    @property
    def timestamp(self) -> int:
        """Timestamp used by TimestampedBuffer ordering."""
        return self.timestamp_ns

    @property
    def translation(self) -> np.ndarray:
        """Return the GPS/INS position."""
        return self.pose.translation

    def to_odometry(self) -> Odometry:
        """Re-express the sample in the odometry axis convention.

        The GPS/INS frame is rotated by 90 degrees about z relative to the
        odometry frame: x_odo = y_ins, y_odo = -x_ins, and the yaw sense
        is reversed.
        """
        t = self.pose.translation
        yaw, _, _ = Rotation.from_matrix(self.pose.rotation).as_euler("ZYX")
        return Odometry(
            timestamp_ns=self.timestamp_ns,
            x=float(t[1]),
            y=float(-t[0]),
            z=float(t[2]),
            yaw=float(-yaw),
        )

    @staticmethod
    def interpolate(
        before: GpsInsPose, after: GpsInsPose, timestamp_ns: int
    ) -> GpsInsPose:
        """Interpolate position linearly and attitude by SLERP."""
        span = after.timestamp_ns - before.timestamp_ns
        alpha = 0.0 if span == 0 else (timestamp_ns - before.timestamp_ns) / span

        translation = (1.0 - alpha) * before.pose.translation + alpha * after.pose.translation
        slerp = Slerp(
            [0.0, 1.0],
            Rotation.from_matrix(np.stack([before.pose.rotation, after.pose.rotation])),
        )
        rotation = slerp([alpha]).as_matrix()[0]

        return GpsInsPose(
            timestamp_ns=timestamp_ns,
            pose=SE3(rotation=rotation, translation=translation),
        )
