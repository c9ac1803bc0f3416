"""Tests for two-view triangulation and robust pose estimation."""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from camodo.camera_models import PinholeCamera
from camodo.geometry import SE3
from camodo.visual_odometry import (
    estimate_absolute_pose,
    estimate_relative_pose,
    triangulate_dlt,
    triangulate_points,
)

THRESHOLD = 2.0 / 300.0


def _pixels(camera: PinholeCamera, points: np.ndarray, pose: SE3) -> np.ndarray:
    pixels, _ = camera.project(points, pose.rotation, pose.translation)
    return pixels


class TestTriangulation:
    """Test suite for triangulation."""

    def test_dlt_recovers_points(self, camera, landmarks, sideways_poses):
        """Test exact triangulation from two views."""
        pose1, pose2 = sideways_poses[0], sideways_poses[2]
        rays1 = camera.lift_projective(_pixels(camera, landmarks, pose1))
        rays2 = camera.lift_projective(_pixels(camera, landmarks, pose2))

        points = triangulate_dlt(pose1, rays1, pose2, rays2)

        np.testing.assert_allclose(points, landmarks, atol=1e-6)

    def test_valid_points_pass_all_checks(self, camera, landmarks, sideways_poses):
        """Test that exact, well-separated correspondences all survive."""
        pose1, pose2 = sideways_poses[0], sideways_poses[1]

        result = triangulate_points(
            camera,
            pose1,
            _pixels(camera, landmarks, pose1),
            pose2,
            _pixels(camera, landmarks, pose2),
        )

        assert len(result) == len(landmarks)
        np.testing.assert_array_equal(result.indices, np.arange(len(landmarks)))

    def test_surviving_points_satisfy_invariants(self, camera, landmarks, sideways_poses):
        """Test depth, reprojection and disparity of every accepted point."""
        rng = np.random.default_rng(3)
        pose1, pose2 = sideways_poses[0], sideways_poses[1]
        pixels1 = _pixels(camera, landmarks, pose1) + rng.normal(0.0, 2.0, (len(landmarks), 2))
        pixels2 = _pixels(camera, landmarks, pose2) + rng.normal(0.0, 2.0, (len(landmarks), 2))

        result = triangulate_points(camera, pose1, pixels1, pose2, pixels2)

        for point, idx in zip(result.points, result.indices):
            proj1, depth1 = camera.project(point, pose1.rotation, pose1.translation)
            proj2, depth2 = camera.project(point, pose2.rotation, pose2.translation)
            assert depth1[0] > 0.0 and depth2[0] > 0.0
            assert np.linalg.norm(proj1[0] - pixels1[idx]) <= 3.0
            assert np.linalg.norm(proj2[0] - pixels2[idx]) <= 3.0
            assert np.linalg.norm(proj1[0] - proj2[0]) >= 3.0

    def test_small_disparity_rejected(self, camera, landmarks):
        """Test that near-parallel rays are rejected only with pixel checks."""
        pose1 = SE3.identity()
        pose2 = SE3(rotation=np.eye(3), translation=np.array([-0.01, 0.0, 0.0]))
        pixels1 = _pixels(camera, landmarks, pose1)
        pixels2 = _pixels(camera, landmarks, pose2)

        checked = triangulate_points(camera, pose1, pixels1, pose2, pixels2)
        unchecked = triangulate_points(
            camera, pose1, pixels1, pose2, pixels2, check_pixel_error=False
        )

        assert len(checked) == 0
        assert len(unchecked) == len(landmarks)

    def test_points_behind_camera_rejected(self, camera, sideways_poses):
        """Test the cheirality check."""
        behind = np.array([[0.5, 0.2, -5.0], [-0.5, 0.1, -6.0]])
        pose1, pose2 = sideways_poses[0], sideways_poses[1]

        result = triangulate_points(
            camera,
            pose1,
            _pixels(camera, behind, pose1),
            pose2,
            _pixels(camera, behind, pose2),
            check_pixel_error=False,
        )

        assert len(result) == 0

    def test_empty_input(self, camera, sideways_poses):
        """Test triangulation of no correspondences."""
        result = triangulate_points(
            camera, sideways_poses[0], np.zeros((0, 2)), sideways_poses[1], np.zeros((0, 2))
        )

        assert len(result) == 0
        assert result.points.shape == (0, 3)


class TestPoseEstimation:
    """Test suite for essential-matrix and PnP pose estimation."""

    def test_relative_pose_direction(self, camera, landmarks, sideways_poses):
        """Test that the two-view pose recovers rotation and translation direction."""
        pose1, pose2 = sideways_poses[0], sideways_poses[1]
        rays1 = camera.lift_projective(_pixels(camera, landmarks, pose1))[:, :2]
        rays2 = camera.lift_projective(_pixels(camera, landmarks, pose2))[:, :2]

        estimate = estimate_relative_pose(rays1, rays2, THRESHOLD)

        assert estimate.success
        assert estimate.num_inliers > 0.9 * len(landmarks)
        np.testing.assert_allclose(estimate.pose.rotation, np.eye(3), atol=1e-3)
        np.testing.assert_allclose(estimate.pose.translation, [-1.0, 0.0, 0.0], atol=1e-3)

    def test_relative_pose_needs_five_points(self):
        """Test that fewer than five correspondences fail."""
        estimate = estimate_relative_pose(np.zeros((4, 2)), np.zeros((4, 2)), THRESHOLD)

        assert not estimate.success
        assert estimate.pose is None

    def test_absolute_pose(self, camera, landmarks):
        """Test PnP from a perturbed seed."""
        truth = SE3(
            rotation=Rotation.from_rotvec([0.02, -0.05, 0.01]).as_matrix(),
            translation=np.array([-0.4, 0.1, 0.2]),
        )
        rays = camera.lift_projective(_pixels(camera, landmarks, truth))[:, :2]

        estimate = estimate_absolute_pose(landmarks, rays, SE3.identity(), THRESHOLD)

        assert estimate.success
        np.testing.assert_allclose(estimate.pose.rotation, truth.rotation, atol=1e-5)
        np.testing.assert_allclose(estimate.pose.translation, truth.translation, atol=1e-5)
