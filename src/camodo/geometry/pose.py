"""SE(3) rigid body transformations."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    The transform maps points from a source frame into a target frame:

        p_target = R @ p_source + t

    Camera poses produced by the sliding-window estimator use the
    world-to-camera convention (``T_camera_world``), which is what the
    projection model consumes directly. Odometry poses use the
    body-to-world convention (``T_world_body``).

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix of the form:
               [[R  t]
                [0  1]]

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")

        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from OpenCV Rodrigues vector and translation.

        cv2.solvePnP returns T_camera_world, which is exactly the camera
        pose convention used throughout this package, so no inversion is
        required.

        Args:
            rvec: 3D Rodrigues rotation vector (axis * angle)
            tvec: 3D translation vector

        Returns:
            SE3 transformation
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).flatten())
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten(), self.translation.copy()

    @property
    def quaternion(self) -> np.ndarray:
        """Return the rotation as a unit Hamilton quaternion (w, x, y, z)."""
        return rotation_to_quaternion(self.rotation)

    def inverse(self) -> SE3:
        """Compute the inverse transformation T^{-1}.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        return SE3(rotation=R_inv, translation=-R_inv @ self.translation)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            T_world_prev.compose(T_prev_curr) gives T_world_curr
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transform to an Nx3 array of points."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return (self.rotation @ points.T).T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        """Apply the transform to a single 3D point."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    def copy(self) -> SE3:
        """Return a deep copy of this transform."""
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    def __repr__(self) -> str:
        """Return string representation."""
        t = self.translation
        return f"SE3(translation=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition."""
        return self.compose(other)


def quaternion_to_rotation(q: np.ndarray) -> np.ndarray:
    """Convert a (possibly unnormalized) quaternion (w, x, y, z) to a rotation.

    Args:
        q: 4-vector Hamilton quaternion

    Returns:
        3x3 rotation matrix
    """
    q = np.asarray(q, dtype=np.float64)
    qw, qx, qy, qz = q / np.linalg.norm(q)

    # https://www.euclideanspace.com/maths/geometry/rotations/conversions/quaternionToMatrix/
    return np.array(
        [
            [
                1 - 2 * qy * qy - 2 * qz * qz,
                2 * qx * qy - 2 * qz * qw,
                2 * qx * qz + 2 * qy * qw,
            ],
            [
                2 * qx * qy + 2 * qz * qw,
                1 - 2 * qx * qx - 2 * qz * qz,
                2 * qy * qz - 2 * qx * qw,
            ],
            [
                2 * qx * qz - 2 * qy * qw,
                2 * qy * qz + 2 * qx * qw,
                1 - 2 * qx * qx - 2 * qy * qy,
            ],
        ],
        dtype=np.float64,
    )


def rotation_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert a rotation matrix to a unit quaternion (w, x, y, z) with w >= 0."""
    R = np.asarray(R, dtype=np.float64)
    trace = np.trace(R)

    # Shepperd's method: pick the largest diagonal term for stability
    if trace > 0.0:
        s = 2.0 * np.sqrt(trace + 1.0)
        q = np.array(
            [
                0.25 * s,
                (R[2, 1] - R[1, 2]) / s,
                (R[0, 2] - R[2, 0]) / s,
                (R[1, 0] - R[0, 1]) / s,
            ]
        )
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        q = np.array(
            [
                (R[2, 1] - R[1, 2]) / s,
                0.25 * s,
                (R[0, 1] + R[1, 0]) / s,
                (R[0, 2] + R[2, 0]) / s,
            ]
        )
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        q = np.array(
            [
                (R[0, 2] - R[2, 0]) / s,
                (R[0, 1] + R[1, 0]) / s,
                0.25 * s,
                (R[1, 2] + R[2, 1]) / s,
            ]
        )
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        q = np.array(
            [
                (R[1, 0] - R[0, 1]) / s,
                (R[0, 2] + R[2, 0]) / s,
                (R[1, 2] + R[2, 1]) / s,
                0.25 * s,
            ]
        )

    q /= np.linalg.norm(q)
    if q[0] < 0.0:
        q = -q
    return q


def rotation_angle(R: np.ndarray) -> float:
    """Extract rotation angle from a 3x3 rotation matrix.

    Uses the trace formula: trace(R) = 1 + 2*cos(theta)

    Returns:
        Rotation angle in radians [0, pi]
    """
    cos_theta = np.clip((np.trace(R) - 1) / 2, -1.0, 1.0)
    return float(np.arccos(cos_theta))


def quaternions_to_rotations(Q: np.ndarray) -> np.ndarray:
    """Vectorized quaternion_to_rotation for a Kx4 array of (w, x, y, z).

    Returns:
        Kx3x3 rotation matrices
    """
    Q = np.asarray(Q, dtype=np.float64).reshape(-1, 4)
    Q = Q / np.linalg.norm(Q, axis=1, keepdims=True)
    qw, qx, qy, qz = Q[:, 0], Q[:, 1], Q[:, 2], Q[:, 3]

    R = np.empty((len(Q), 3, 3))
    R[:, 0, 0] = 1 - 2 * qy * qy - 2 * qz * qz
    R[:, 0, 1] = 2 * qx * qy - 2 * qz * qw
    R[:, 0, 2] = 2 * qx * qz + 2 * qy * qw
    R[:, 1, 0] = 2 * qx * qy + 2 * qz * qw
    R[:, 1, 1] = 1 - 2 * qx * qx - 2 * qz * qz
    R[:, 1, 2] = 2 * qy * qz - 2 * qx * qw
    R[:, 2, 0] = 2 * qx * qz - 2 * qy * qw
    R[:, 2, 1] = 2 * qy * qz + 2 * qx * qw
    R[:, 2, 2] = 1 - 2 * qx * qx - 2 * qy * qy
    return R
