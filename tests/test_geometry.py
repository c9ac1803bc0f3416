"""Tests for SE3 transforms and proprioceptive pose samples."""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from camodo.geometry import (
    SE3,
    GpsInsPose,
    Odometry,
    quaternion_to_rotation,
    quaternions_to_rotations,
    rotation_angle,
    rotation_to_quaternion,
)


@pytest.fixture
def transform() -> SE3:
    """A generic rigid transform."""
    R = Rotation.from_euler("ZYX", [0.4, -0.2, 0.1]).as_matrix()
    return SE3(rotation=R, translation=np.array([1.0, -2.0, 0.5]))


class TestSE3:
    """Test suite for SE3."""

    def test_inverse_composes_to_identity(self, transform: SE3):
        """Test that T @ T^-1 is the identity."""
        result = transform @ transform.inverse()

        np.testing.assert_allclose(result.to_matrix(), np.eye(4), atol=1e-12)

    def test_matrix_round_trip(self, transform: SE3):
        """Test conversion to and from a 4x4 matrix."""
        restored = SE3.from_matrix(transform.to_matrix())

        np.testing.assert_allclose(restored.rotation, transform.rotation)
        np.testing.assert_allclose(restored.translation, transform.translation)

    def test_rvec_tvec_round_trip(self, transform: SE3):
        """Test conversion through OpenCV Rodrigues vectors."""
        rvec, tvec = transform.to_rvec_tvec()
        restored = SE3.from_rvec_tvec(rvec, tvec)

        np.testing.assert_allclose(restored.rotation, transform.rotation, atol=1e-10)

    def test_transform_points_matches_matrix(self, transform: SE3):
        """Test that transform_points agrees with the homogeneous matrix."""
        points = np.array([[1.0, 2.0, 3.0], [-1.0, 0.0, 5.0]])
        expected = (transform.to_matrix() @ np.column_stack([points, np.ones(2)]).T).T[:, :3]

        np.testing.assert_allclose(transform.transform_points(points), expected)

    def test_invalid_shapes_raise(self):
        """Test that malformed rotations and matrices are rejected."""
        with pytest.raises(ValueError, match="Rotation must be 3x3"):
            SE3(rotation=np.eye(2), translation=np.zeros(3))
        with pytest.raises(ValueError, match="Transform must be 4x4"):
            SE3.from_matrix(np.eye(3))


class TestQuaternions:
    """Test suite for quaternion helpers."""

    def test_quaternion_round_trip(self, transform: SE3):
        """Test rotation -> quaternion -> rotation."""
        q = rotation_to_quaternion(transform.rotation)

        assert q[0] >= 0.0
        np.testing.assert_allclose(np.linalg.norm(q), 1.0)
        np.testing.assert_allclose(quaternion_to_rotation(q), transform.rotation, atol=1e-12)

    def test_unnormalized_quaternion(self):
        """Test that scaled quaternions give the same rotation."""
        q = np.array([0.9, 0.1, -0.3, 0.2])

        np.testing.assert_allclose(quaternion_to_rotation(3.0 * q), quaternion_to_rotation(q))

    def test_vectorized_matches_scalar(self):
        """Test that the batched conversion matches the single one."""
        Q = np.array([[1.0, 0.0, 0.0, 0.0], [0.9, 0.1, -0.3, 0.2], [0.1, 0.7, 0.7, 0.0]])
        R = quaternions_to_rotations(Q)

        assert R.shape == (3, 3, 3)
        for q, R_i in zip(Q, R):
            np.testing.assert_allclose(R_i, quaternion_to_rotation(q), atol=1e-12)

    def test_rotation_angle(self):
        """Test angle extraction from a rotation about z."""
        R = Rotation.from_rotvec([0.0, 0.0, 0.3]).as_matrix()

        assert rotation_angle(R) == pytest.approx(0.3)
        assert rotation_angle(np.eye(3)) == pytest.approx(0.0)


class TestOdometry:
    """Test suite for Odometry samples."""

    def test_to_matrix_is_body_to_world(self):
        """Test that the pose maps body coordinates into the world."""
        odo = Odometry(timestamp_ns=0, x=1.0, y=2.0, yaw=np.pi / 2)
        T = odo.to_matrix()

        # Body x axis points along world y after a 90 degree yaw
        np.testing.assert_allclose(T[:3, :3] @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(T[:3, 3], [1.0, 2.0, 0.0])

    def test_interpolate_midpoint(self):
        """Test linear interpolation halfway between two samples."""
        before = Odometry(timestamp_ns=0, x=0.0, y=0.0, yaw=0.0)
        after = Odometry(timestamp_ns=100, x=2.0, y=4.0, yaw=0.4)

        mid = Odometry.interpolate(before, after, 50)

        assert mid.timestamp_ns == 50
        assert mid.x == pytest.approx(1.0)
        assert mid.y == pytest.approx(2.0)
        assert mid.yaw == pytest.approx(0.2)

    def test_interpolate_yaw_shortest_arc(self):
        """Test that yaw interpolation wraps across +-pi."""
        before = Odometry(timestamp_ns=0, yaw=np.pi - 0.1)
        after = Odometry(timestamp_ns=100, yaw=-np.pi + 0.1)

        mid = Odometry.interpolate(before, after, 50)

        assert abs(abs(mid.yaw) - np.pi) < 1e-9


class TestGpsInsPose:
    """Test suite for GPS/INS samples."""

    def test_to_odometry_axis_convention(self):
        """Test the GPS/INS to odometry axis mapping."""
        pose = SE3(
            rotation=Rotation.from_euler("ZYX", [0.3, 0.0, 0.0]).as_matrix(),
            translation=np.array([1.0, 2.0, 3.0]),
        )
        odo = GpsInsPose(timestamp_ns=7, pose=pose).to_odometry()

        assert odo.timestamp_ns == 7
        assert odo.x == pytest.approx(2.0)
        assert odo.y == pytest.approx(-1.0)
        assert odo.z == pytest.approx(3.0)
        assert odo.yaw == pytest.approx(-0.3)

    def test_interpolate(self):
        """Test position and attitude interpolation."""
        before = GpsInsPose(timestamp_ns=0, pose=SE3.identity())
        after = GpsInsPose(
            timestamp_ns=10,
            pose=SE3(
                rotation=Rotation.from_rotvec([0.0, 0.0, 0.2]).as_matrix(),
                translation=np.array([2.0, 0.0, 0.0]),
            ),
        )

        mid = GpsInsPose.interpolate(before, after, 5)

        np.testing.assert_allclose(mid.translation, [1.0, 0.0, 0.0])
        assert rotation_angle(mid.pose.rotation) == pytest.approx(0.1)
