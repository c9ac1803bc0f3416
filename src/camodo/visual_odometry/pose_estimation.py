"""Robust two-view and 2D-3D pose estimation on normalized coordinates.

Both estimators work on lifted (undistorted, unit-depth) image points with
an identity camera matrix, so they are independent of the camera model.
Pixel thresholds are converted to normalized units by dividing by a
nominal focal length.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from ..geometry import SE3


@dataclass
class PoseEstimate:
    """Result of a robust pose estimation.

    Attributes:
        success: True if a pose was found
        pose: World-to-camera transform of the queried view, None if failed
        inliers: Boolean mask over the input correspondences
        num_inliers: Number of inlier correspondences
    """

    success: bool
    pose: SE3 | None
    inliers: np.ndarray  # (N,) bool
    num_inliers: int


def _failure(n_points: int) -> PoseEstimate:
    return PoseEstimate(
        success=False, pose=None, inliers=np.zeros(n_points, dtype=bool), num_inliers=0
    )


def estimate_relative_pose(
    rays_prev: np.ndarray,
    rays_curr: np.ndarray,
    threshold: float,
    confidence: float = 0.99,
) -> PoseEstimate:
    """Estimate the current view's pose relative to the previous one.

    Fits an essential matrix with RANSAC, then keeps the decomposition that
    puts the inliers in front of both cameras. The translation has unit
    norm (monocular scale is unobservable).

    Args:
        rays_prev: Nx2 normalized coordinates in the previous view
        rays_curr: Nx2 normalized coordinates in the current view
        threshold: RANSAC inlier threshold in normalized units
        confidence: RANSAC confidence

    Returns:
        PoseEstimate whose pose maps previous-camera to current-camera coordinates
    """
    rays_prev = np.asarray(rays_prev, dtype=np.float64).reshape(-1, 2)
    rays_curr = np.asarray(rays_curr, dtype=np.float64).reshape(-1, 2)
    n_points = len(rays_prev)
    if n_points < 5:
        return _failure(n_points)

    try:
        E, mask = cv2.findEssentialMat(
            rays_prev,
            rays_curr,
            focal=1.0,
            pp=(0.0, 0.0),
            method=cv2.RANSAC,
            prob=confidence,
            threshold=threshold,
        )
        if E is None or E.shape[0] < 3:
            return _failure(n_points)
        # Several candidate solutions come back stacked
        E = E[:3]

        _, R, t, mask = cv2.recoverPose(
            E, rays_prev, rays_curr, focal=1.0, pp=(0.0, 0.0), mask=mask
        )
    except cv2.error:
        return _failure(n_points)

    if mask is None:
        return _failure(n_points)

    inliers = mask.flatten() > 0
    return PoseEstimate(
        success=True,
        pose=SE3(rotation=R, translation=t.flatten()),
        inliers=inliers,
        num_inliers=int(np.sum(inliers)),
    )


def estimate_absolute_pose(
    points_3d: np.ndarray,
    rays: np.ndarray,
    initial_pose: SE3,
    threshold: float,
    max_iterations: int = 100,
) -> PoseEstimate:
    """Estimate a world-to-camera pose from 2D-3D correspondences.

    Runs PnP RANSAC with an identity camera matrix, seeded from an initial
    guess (typically the previous pose composed with the predicted motion).

    Args:
        points_3d: Nx3 world points
        rays: Nx2 normalized coordinates of their observations
        initial_pose: World-to-camera seed
        threshold: RANSAC inlier threshold in normalized units
        max_iterations: RANSAC iterations

    Returns:
        PoseEstimate with the world-to-camera pose
    """
    points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
    rays = np.asarray(rays, dtype=np.float64).reshape(-1, 2)
    n_points = len(points_3d)
    if n_points < 4:
        return _failure(n_points)

    rvec, tvec = initial_pose.to_rvec_tvec()

    try:
        success, rvec, tvec, inliers = cv2.solvePnPRansac(
            objectPoints=points_3d,
            imagePoints=rays,
            cameraMatrix=np.eye(3),
            distCoeffs=None,
            rvec=rvec.reshape(3, 1).copy(),
            tvec=tvec.reshape(3, 1).copy(),
            useExtrinsicGuess=True,
            iterationsCount=max_iterations,
            reprojectionError=threshold,
            flags=cv2.SOLVEPNP_ITERATIVE,
        )
    except cv2.error:
        return _failure(n_points)

    if not success or inliers is None:
        return _failure(n_points)
    if not np.isfinite(rvec).all() or not np.isfinite(tvec).all():
        return _failure(n_points)

    inlier_mask = np.zeros(n_points, dtype=bool)
    inlier_mask[inliers.flatten()] = True

    return PoseEstimate(
        success=True,
        pose=SE3.from_rvec_tvec(rvec, tvec),
        inliers=inlier_mask,
        num_inliers=int(np.sum(inlier_mask)),
    )
