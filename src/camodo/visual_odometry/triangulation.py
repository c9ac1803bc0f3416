"""Linear two-view triangulation with validity tests."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..camera_models import PinholeCamera
from ..geometry import SE3


@dataclass
class TriangulationResult:
    """Points that survived triangulation.

    Attributes:
        points: Mx3 world points
        indices: (M,) indices into the input correspondence arrays
    """

    points: np.ndarray  # (M, 3) float64
    indices: np.ndarray  # (M,) int

    def __len__(self) -> int:
        """Return number of surviving points."""
        return len(self.indices)


def triangulate_dlt(
    pose1: SE3, rays1: np.ndarray, pose2: SE3, rays2: np.ndarray
) -> np.ndarray:
    """Homogeneous DLT triangulation on normalized image coordinates.

    For each correspondence the four linear constraints of both projection
    matrices P = [R | t] are stacked and the right singular vector of the
    smallest singular value is taken as the homogeneous point.

    Args:
        pose1: World-to-camera transform of the first view
        rays1: Nx2 (or Nx3 with z = 1) normalized coordinates in view 1
        pose2: World-to-camera transform of the second view
        rays2: Nx2 (or Nx3 with z = 1) normalized coordinates in view 2

    Returns:
        Nx3 world points
    """
    rays1 = np.asarray(rays1, dtype=np.float64)
    rays2 = np.asarray(rays2, dtype=np.float64)
    if len(rays1) == 0:
        return np.zeros((0, 3))

    P1 = pose1.to_matrix()[:3]
    P2 = pose2.to_matrix()[:3]

    A = np.empty((len(rays1), 4, 4))
    A[:, 0] = rays1[:, 0:1] * P1[2] - P1[0]
    A[:, 1] = rays1[:, 1:2] * P1[2] - P1[1]
    A[:, 2] = rays2[:, 0:1] * P2[2] - P2[0]
    A[:, 3] = rays2[:, 1:2] * P2[2] - P2[1]

    _, _, Vt = np.linalg.svd(A)
    X = Vt[:, -1, :]

    with np.errstate(divide="ignore", invalid="ignore"):
        return X[:, :3] / X[:, 3:4]


def triangulate_points(
    camera: PinholeCamera,
    pose1: SE3,
    pixels1: np.ndarray,
    pose2: SE3,
    pixels2: np.ndarray,
    check_pixel_error: bool = True,
    max_reproj_error: float = 3.0,
    min_disparity: float = 3.0,
) -> TriangulationResult:
    """Triangulate pixel correspondences and keep only valid points.

    A point is rejected when it lies behind either camera. With
    check_pixel_error it is also rejected when its reprojection error in
    either view exceeds max_reproj_error, or when its two reprojections are
    closer than min_disparity pixels (near-parallel rays).

    Args:
        camera: Camera model used for lifting and reprojection
        pose1: World-to-camera transform of the first view
        pixels1: Nx2 observed pixels in view 1
        pose2: World-to-camera transform of the second view
        pixels2: Nx2 observed pixels in view 2
        check_pixel_error: Apply the reprojection and disparity tests
        max_reproj_error: Reprojection threshold (pixels)
        min_disparity: Minimum disparity (pixels)

    Returns:
        TriangulationResult with surviving points and their input indices
    """
    pixels1 = np.asarray(pixels1, dtype=np.float64).reshape(-1, 2)
    pixels2 = np.asarray(pixels2, dtype=np.float64).reshape(-1, 2)
    if len(pixels1) == 0:
        return TriangulationResult(points=np.zeros((0, 3)), indices=np.zeros(0, dtype=int))

    points = triangulate_dlt(
        pose1, camera.lift_projective(pixels1), pose2, camera.lift_projective(pixels2)
    )

    valid = np.all(np.isfinite(points), axis=1)
    safe_points = np.where(valid[:, None], points, 0.0)

    with np.errstate(divide="ignore", invalid="ignore"):
        proj1, depth1 = camera.project(safe_points, pose1.rotation, pose1.translation)
        proj2, depth2 = camera.project(safe_points, pose2.rotation, pose2.translation)

    # Cheirality in both views
    valid &= (depth1 > 0.0) & (depth2 > 0.0)

    if check_pixel_error:
        with np.errstate(invalid="ignore"):
            valid &= np.linalg.norm(proj1 - pixels1, axis=1) <= max_reproj_error
            valid &= np.linalg.norm(proj2 - pixels2, axis=1) <= max_reproj_error
            valid &= np.linalg.norm(proj1 - proj2, axis=1) >= min_disparity

    indices = np.flatnonzero(valid)
    return TriangulationResult(points=points[indices], indices=indices)
