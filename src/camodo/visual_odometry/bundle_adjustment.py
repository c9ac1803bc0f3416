"""Windowed bundle adjustment using scipy.optimize.least_squares.

Jointly refines the pose variables exposed by the estimation mode and the
positions of all scene points observed in the window by minimizing the
robustified sum of squared reprojection errors:

    minimize sum_i rho(||observed_i - project(pose_j, point_k)||^2)

Where:
- observed_i is a 2D pixel observation in window frame j
- pose_j is that frame's world-to-camera transform, rebuilt from the mode's
  pose variables (frame poses in self-pose mode, the extrinsic otherwise)
- point_k is the 3D scene point linked to the observation
- project() is the camera's projection model, distortion included
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

if TYPE_CHECKING:
    from ..camera_models import PinholeCamera
    from ..sparse_graph import Frame, Point3DFeature
    from .estimation_modes import EstimationMode

logger = logging.getLogger(__name__)

MIN_DEPTH = 1e-6


@dataclass
class BAResult:
    """Result of bundle adjustment optimization."""

    success: bool
    initial_cost: float = 0.0
    final_cost: float = 0.0
    iterations: int = 0
    num_observations: int = 0
    num_points: int = 0
    message: str = ""


@dataclass
class _Observations:
    frame_idx: np.ndarray  # (M,) int
    point_idx: np.ndarray  # (M,) int
    pixels: np.ndarray  # (M, 2) float64

    def __len__(self) -> int:
        return len(self.frame_idx)


class WindowBundleAdjuster:
    """Bundle adjustment over a window of frames.

    Each observation's residual depends only on its frame's pose variables
    and its point's three coordinates, which is passed to the solver as a
    sparse Jacobian pattern.
    """

    def __init__(
        self,
        max_iterations: int = 20,
        ftol: float = 1e-8,
        xtol: float = 1e-8,
        loss: str = "cauchy",
        f_scale: float = 1.0,
    ) -> None:
        """Initialize bundle adjustment optimizer.

        Args:
            max_iterations: Maximum residual evaluations of the solver
            ftol: Function tolerance for convergence
            xtol: Parameter tolerance for convergence
            loss: Loss function ("linear", "huber", "soft_l1", "cauchy")
            f_scale: Soft inlier margin of the robust loss (pixels)
        """
        self._max_iterations = max_iterations
        self._ftol = ftol
        self._xtol = xtol
        self._loss = loss
        self._f_scale = f_scale

    def optimize(
        self,
        frames: list[Frame],
        camera: PinholeCamera,
        mode: EstimationMode,
        n_fixed: int,
    ) -> BAResult:
        """Refine the window in place.

        Poses and points are written back only when the solve does not
        diverge.

        Args:
            frames: Window frames, oldest first
            camera: Projection model
            mode: Estimation mode providing the pose parameterization
            n_fixed: Number of leading frames whose poses are held fixed

        Returns:
            BAResult describing the solve
        """
        points, observations = self._collect_observations(frames)
        if len(observations) == 0:
            return BAResult(success=False, message="No 3D-backed observations")

        pose_params = mode.pack_parameters(frames, n_fixed)
        n_pose_params = len(pose_params)
        point_params = np.array([p.point for p in points], dtype=np.float64).ravel()
        x0 = np.concatenate([pose_params, point_params])

        args = (frames, camera, mode, n_fixed, n_pose_params, observations)

        initial_residuals = self._compute_residuals(x0, *args)
        initial_cost = 0.5 * float(np.sum(initial_residuals**2))

        sparsity = self._build_sparsity_matrix(
            frames, mode, n_fixed, n_pose_params, len(points), observations
        )

        result = least_squares(
            fun=self._compute_residuals,
            x0=x0,
            jac_sparsity=sparsity,
            args=args,
            method="trf",
            loss=self._loss,
            f_scale=self._f_scale,
            ftol=self._ftol,
            xtol=self._xtol,
            max_nfev=self._max_iterations,
            verbose=0,
        )

        final_cost = 0.5 * float(np.sum(result.fun**2))

        # Check for divergence
        if not np.all(np.isfinite(result.x)) or final_cost > initial_cost * 10:
            logger.debug(
                "BA diverged (cost %.3f -> %.3f), keeping previous estimate",
                initial_cost,
                final_cost,
            )
            return BAResult(
                success=False,
                initial_cost=initial_cost,
                final_cost=final_cost,
                iterations=result.nfev,
                num_observations=len(observations),
                num_points=len(points),
                message="Optimization diverged",
            )

        mode.apply_parameters(result.x[:n_pose_params], frames, n_fixed)
        for point, position in zip(points, result.x[n_pose_params:].reshape(-1, 3)):
            point.point = position.copy()

        logger.debug(
            "BA: %d frames (%d fixed), %d points, %d observations, cost %.3f -> %.3f",
            len(frames),
            min(n_fixed, len(frames)),
            len(points),
            len(observations),
            initial_cost,
            final_cost,
        )

        return BAResult(
            success=bool(result.success) or final_cost < initial_cost,
            initial_cost=initial_cost,
            final_cost=final_cost,
            iterations=result.nfev,
            num_observations=len(observations),
            num_points=len(points),
            message=result.message,
        )

    @staticmethod
    def _collect_observations(
        frames: list[Frame],
    ) -> tuple[list[Point3DFeature], _Observations]:
        """Collect all 3D-backed observations and the distinct points they see."""
        points: list[Point3DFeature] = []
        point_index: dict[int, int] = {}
        frame_idx: list[int] = []
        point_idx: list[int] = []
        pixels: list[np.ndarray] = []

        for f_idx, frame in enumerate(frames):
            for feature in frame.features_2d:
                point = feature.feature_3d
                if point is None:
                    continue

                key = id(point)
                if key not in point_index:
                    point_index[key] = len(points)
                    points.append(point)

                frame_idx.append(f_idx)
                point_idx.append(point_index[key])
                pixels.append(feature.keypoint)

        observations = _Observations(
            frame_idx=np.array(frame_idx, dtype=int),
            point_idx=np.array(point_idx, dtype=int),
            pixels=np.array(pixels, dtype=np.float64).reshape(-1, 2),
        )
        return points, observations

    @staticmethod
    def _compute_residuals(
        params: np.ndarray,
        frames: list[Frame],
        camera: PinholeCamera,
        mode: EstimationMode,
        n_fixed: int,
        n_pose_params: int,
        observations: _Observations,
    ) -> np.ndarray:
        """Compute reprojection residuals for all observations."""
        rotations, translations = mode.unpack_poses(params[:n_pose_params], frames, n_fixed)
        points_3d = params[n_pose_params:].reshape(-1, 3)

        R = rotations[observations.frame_idx]
        t = translations[observations.frame_idx]
        P = points_3d[observations.point_idx]

        P_cam = np.einsum("nij,nj->ni", R, P) + t
        # Points behind the camera are clamped to a tiny depth, which yields
        # a large residual the robust loss saturates
        P_cam[:, 2] = np.maximum(P_cam[:, 2], MIN_DEPTH)

        projected = camera.space_to_plane(P_cam)
        return (observations.pixels - projected).ravel()

    @staticmethod
    def _build_sparsity_matrix(
        frames: list[Frame],
        mode: EstimationMode,
        n_fixed: int,
        n_pose_params: int,
        n_points: int,
        observations: _Observations,
    ) -> lil_matrix:
        """Build sparse Jacobian structure for efficient optimization."""
        n_params = n_pose_params + 3 * n_points
        n_residuals = 2 * len(observations)

        sparsity = lil_matrix((n_residuals, n_params), dtype=int)

        for i in range(len(observations)):
            row_start = 2 * i

            # Pose Jacobian entries
            for col in mode.pose_columns(int(observations.frame_idx[i]), n_fixed):
                sparsity[row_start, col] = 1
                sparsity[row_start + 1, col] = 1

            # Point Jacobian entries
            point_col_start = n_pose_params + 3 * int(observations.point_idx[i])
            for j in range(3):
                sparsity[row_start, point_col_start + j] = 1
                sparsity[row_start + 1, point_col_start + j] = 1

        return sparsity
