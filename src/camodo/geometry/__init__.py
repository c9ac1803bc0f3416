"""Rigid transforms and proprioceptive pose types."""

from .odometry import GpsInsPose, Odometry
from .pose import (
    SE3,
    quaternion_to_rotation,
    quaternions_to_rotations,
    rotation_angle,
    rotation_to_quaternion,
)

__all__ = [
    "SE3",
    "Odometry",
    "GpsInsPose",
    "quaternion_to_rotation",
    "quaternions_to_rotations",
    "rotation_to_quaternion",
    "rotation_angle",
]
