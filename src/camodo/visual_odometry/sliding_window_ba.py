"""Sliding-window bundle adjustment over a bounded window of frames."""

from __future__ import annotations

import logging
from collections import deque

import numpy as np

from ..camera_models import PinholeCamera
from ..geometry import SE3
from ..sparse_graph import (
    Frame,
    Point2DFeature,
    Point3DFeature,
    detach_point,
    find_feature_correspondences,
    sever_match,
)
from .bundle_adjustment import BAResult, WindowBundleAdjuster
from .config import SlidingWindowConfig
from .estimation_modes import EstimationMode, SelfPoseMode
from .triangulation import TriangulationResult, triangulate_points

logger = logging.getLogger(__name__)

Correspondence = list[Point2DFeature]


class SlidingWindowBA:
    """Incremental structure-from-motion over the last N frames.

    Each call to add_frame links the new frame to the window through the
    temporal match chain of its features:

    - the first frame after a clear anchors the trajectory;
    - the second frame bootstraps structure from two-view geometry;
    - later frames are localized against existing scene points and extend
      the structure by triangulating new two-view matches.

    Afterwards the window is bundle-adjusted whenever any feature in it
    has a 3D link, and scene points that end up behind an observing camera
    are pruned.

    The estimator is single-threaded and performs no locking.
    """

    def __init__(
        self,
        camera: PinholeCamera,
        mode: EstimationMode | None = None,
        config: SlidingWindowConfig | None = None,
    ) -> None:
        """Initialize sliding-window estimator.

        Args:
            camera: Projection model of the observing camera
            mode: Estimation mode (defaults to visual odometry)
            config: Window and threshold configuration
        """
        self._camera = camera
        self._mode = mode if mode is not None else SelfPoseMode()
        self._config = config or SlidingWindowConfig()

        self._adjuster = WindowBundleAdjuster(
            max_iterations=self._config.max_iterations,
            loss=self._config.loss,
        )

        self._window: deque[Frame] = deque()
        self._frame_count = 0
        self._last_ba_result: BAResult | None = None

    def add_frame(
        self,
        frame: Frame,
        R_rel: np.ndarray | None = None,
        t_rel: np.ndarray | None = None,
    ) -> bool:
        """Add a frame to the window.

        Args:
            frame: New frame whose features are already chained to the
                previous frame's features
            R_rel: Predicted rotation from the previous camera to this one
                (ignored in pose-anchored mode)
            t_rel: Predicted translation from the previous camera to this one

        Returns:
            False, with the window unchanged, if there were not enough
            correspondences to compute the frame's pose or bootstrap
            structure; True otherwise
        """
        R_rel = np.eye(3) if R_rel is None else np.asarray(R_rel, dtype=np.float64)
        t_rel = np.zeros(3) if t_rel is None else np.asarray(t_rel, dtype=np.float64).flatten()

        if self._frame_count == 0:
            self._mode.initialize(frame)
            self._push(frame)
            logger.debug("Added frame %d (anchor)", self._frame_count - 1)
            return True

        prev = self._window[-1]
        self._mode.predict(frame, prev, R_rel, t_rel)

        correspondences = find_feature_correspondences(frame.features_2d, 2)
        logger.debug(
            "Found %d feature correspondences in last 2 frames", len(correspondences)
        )

        if self._frame_count == 1:
            ok = self._bootstrap(prev, frame, correspondences)
        else:
            ok = self._extend(prev, frame, correspondences, R_rel)

        if not ok:
            return False

        self._push(frame)
        logger.debug("Added frame %d", self._frame_count - 1)

        if self._has_structure():
            self._optimize()

        n_pruned = self._prune_points_behind_cameras()
        if n_pruned > 0:
            logger.debug("Pruned %d scene points that were behind cameras", n_pruned)

        if logger.isEnabledFor(logging.DEBUG):
            min_err, max_err, avg_err = self.window_reprojection_error()
            logger.debug(
                "Window reprojection error: min = %.3f | max = %.3f | avg = %.3f",
                min_err,
                max_err,
                avg_err,
            )

        return True

    def _bootstrap(
        self, prev: Frame, curr: Frame, correspondences: list[Correspondence]
    ) -> bool:
        """Compute the second frame's pose and the initial structure."""
        if len(correspondences) < self._config.min_2d2d_correspondences:
            logger.debug("Insufficient 2D-2D correspondences for initialization")
            return False

        pixels_prev = np.array([fc[0].keypoint for fc in correspondences])
        pixels_curr = np.array([fc[1].keypoint for fc in correspondences])

        estimate = self._mode.bootstrap(
            prev,
            curr,
            self._camera.lift_projective(pixels_prev)[:, :2],
            self._camera.lift_projective(pixels_curr)[:, :2],
            self._config,
        )
        if not estimate.success:
            logger.debug("Two-view pose estimation failed")
            return False

        inliers = np.flatnonzero(estimate.inliers)
        tri = self._triangulate(prev, curr, pixels_prev[inliers], pixels_curr[inliers])
        logger.debug(
            "Bootstrap: %d inliers, triangulated %d points", len(inliers), len(tri)
        )

        if len(tri) < self._config.min_2d3d_correspondences:
            logger.debug("Insufficient triangulated points for initialization")
            return False

        for point, idx in zip(tri.points, tri.indices):
            self._create_point(point, correspondences[inliers[idx]])

        self._sever_untriangulated(correspondences)
        return True

    def _extend(
        self,
        prev: Frame,
        curr: Frame,
        correspondences: list[Correspondence],
        R_rel: np.ndarray,
    ) -> bool:
        """Localize a steady-state frame and extend the structure."""
        tri_corr = [fc for fc in correspondences if fc[0].feature_3d is not None]
        untri_corr = [fc for fc in correspondences if fc[0].feature_3d is None]

        points_3d = np.array([fc[0].feature_3d.point for fc in tri_corr]).reshape(-1, 3)
        pixels = np.array([fc[1].keypoint for fc in tri_corr]).reshape(-1, 2)
        rays = self._camera.lift_projective(pixels).reshape(-1, 3)[:, :2]

        if not self._mode.localize(prev, curr, points_3d, rays, R_rel, self._config):
            logger.debug(
                "Could not localize frame from %d 2D-3D correspondences", len(tri_corr)
            )
            return False

        # Extend existing scene points, dropping pixel outliers
        if tri_corr:
            pose = self._mode.world_to_camera(curr)
            errors = self._reprojection_errors(pose, points_3d, pixels)
            n_severed = 0
            for fc, error in zip(tri_corr, errors):
                f0, f1 = fc
                if self._mode.check_pixel_error and not error <= self._config.reproj_error_thresh:
                    sever_match(f0, f1)
                    n_severed += 1
                else:
                    f0.feature_3d.add_observer(f1)
            logger.debug(
                "Extended %d scene points, severed %d outliers",
                len(tri_corr) - n_severed,
                n_severed,
            )

        # Triangulate new correspondences seen in the last 2 frames
        if untri_corr:
            pixels_prev = np.array([fc[0].keypoint for fc in untri_corr])
            pixels_curr = np.array([fc[1].keypoint for fc in untri_corr])
            tri = self._triangulate(prev, curr, pixels_prev, pixels_curr)
            for point, idx in zip(tri.points, tri.indices):
                self._create_point(point, untri_corr[idx])
            self._sever_untriangulated(untri_corr)
            logger.debug(
                "Triangulated %d of %d new correspondences", len(tri), len(untri_corr)
            )

        return True

    def _triangulate(
        self, prev: Frame, curr: Frame, pixels_prev: np.ndarray, pixels_curr: np.ndarray
    ) -> TriangulationResult:
        return triangulate_points(
            self._camera,
            self._mode.world_to_camera(prev),
            pixels_prev,
            self._mode.world_to_camera(curr),
            pixels_curr,
            check_pixel_error=self._mode.check_pixel_error,
            max_reproj_error=self._config.tvt_reproj_error_thresh,
            min_disparity=self._config.min_disparity,
        )

    @staticmethod
    def _create_point(position: np.ndarray, correspondence: Correspondence) -> Point3DFeature:
        point = Point3DFeature(point=position)
        for feature in correspondence:
            point.add_observer(feature)
        return point

    @staticmethod
    def _sever_untriangulated(correspondences: list[Correspondence]) -> None:
        for f0, f1 in correspondences:
            if f1.feature_3d is None:
                sever_match(f0, f1)

    def _push(self, frame: Frame) -> None:
        """Append a frame and evict the oldest beyond N."""
        self._window.append(frame)
        while len(self._window) > self._config.window_size:
            self._window.popleft()
        self._frame_count += 1

    def _has_structure(self) -> bool:
        return any(
            feature.feature_3d is not None
            for frame in self._window
            for feature in frame.features_2d
        )

    def _optimize(self) -> None:
        n_fixed_full = self._config.n_fixed_when_full
        n_fixed = n_fixed_full if len(self._window) > n_fixed_full else 1

        self._last_ba_result = self._adjuster.optimize(
            list(self._window), self._camera, self._mode, n_fixed
        )

    def _prune_points_behind_cameras(self) -> int:
        """Detach every scene point behind any camera observing it."""
        n_pruned = 0
        for frame in self._window:
            pose = self._mode.world_to_camera(frame)
            for feature in frame.features_2d:
                point = feature.feature_3d
                if point is None:
                    continue
                depth = pose.rotation[2] @ point.point + pose.translation[2]
                if depth < 0.0:
                    detach_point(point)
                    n_pruned += 1
        return n_pruned

    def _reprojection_errors(
        self, pose: SE3, points_3d: np.ndarray, pixels: np.ndarray
    ) -> np.ndarray:
        if len(points_3d) == 0:
            return np.zeros(0)
        with np.errstate(divide="ignore", invalid="ignore"):
            projected, _ = self._camera.project(points_3d, pose.rotation, pose.translation)
        return np.linalg.norm(projected - pixels, axis=1)

    def _frame_errors(self, frame: Frame) -> np.ndarray:
        features = frame.features_with_3d()
        if not features:
            return np.zeros(0)
        points_3d = np.array([f.feature_3d.point for f in features])
        pixels = np.array([f.keypoint for f in features])
        return self._reprojection_errors(self._mode.world_to_camera(frame), points_3d, pixels)

    @staticmethod
    def _summarize(errors: np.ndarray) -> tuple[float, float, float]:
        if len(errors) == 0:
            return 0.0, 0.0, 0.0
        return float(np.min(errors)), float(np.max(errors)), float(np.mean(errors))

    def frame_reprojection_error(self, window_idx: int) -> tuple[float, float, float]:
        """Return (min, max, mean) reprojection error of one window frame.

        Args:
            window_idx: Index into the window, 0 = oldest

        Returns:
            Errors in pixels, all zero if the frame has no 3D-backed features
        """
        return self._summarize(self._frame_errors(self._window[window_idx]))

    def window_reprojection_error(self) -> tuple[float, float, float]:
        """Return (min, max, mean) reprojection error over the whole window."""
        if not self._window:
            return 0.0, 0.0, 0.0
        errors = np.concatenate([self._frame_errors(frame) for frame in self._window])
        return self._summarize(errors)

    def clear(self) -> None:
        """Drop all frames; the next frame becomes a new anchor."""
        self._window.clear()
        self._frame_count = 0

    def empty(self) -> bool:
        """Return True if the window holds no frames."""
        return not self._window

    def window_size(self) -> int:
        """Return number of frames in the window."""
        return len(self._window)

    def current_frame(self) -> Frame | None:
        """Return the most recently added frame."""
        return self._window[-1] if self._window else None

    def frames(self) -> list[Frame]:
        """Return the window frames, oldest first."""
        return list(self._window)

    def poses(self) -> list[np.ndarray]:
        """Return copies of the window's world-to-camera 4x4 transforms."""
        return [self._mode.world_to_camera(frame).to_matrix() for frame in self._window]

    def scene_points(self) -> np.ndarray:
        """Return an Mx3 copy of the distinct scene points seen in the window."""
        seen: dict[int, np.ndarray] = {}
        for frame in self._window:
            for feature in frame.features_2d:
                point = feature.feature_3d
                if point is not None and id(point) not in seen:
                    seen[id(point)] = point.point.copy()

        if not seen:
            return np.zeros((0, 3))
        return np.array(list(seen.values()))

    @property
    def camera_extrinsic(self) -> SE3 | None:
        """Return the refined camera pose in the odometry frame (pose-anchored mode)."""
        extrinsic = self._mode.extrinsic
        return extrinsic.copy() if extrinsic is not None else None

    @property
    def N(self) -> int:
        """Return maximum window size."""
        return self._config.window_size

    @property
    def n(self) -> int:
        """Return number of frames left free once the window is full."""
        return self._config.n_free

    @property
    def frame_count(self) -> int:
        """Return number of frames accepted since the last clear."""
        return self._frame_count

    @property
    def mode(self) -> EstimationMode:
        """Return the estimation mode."""
        return self._mode

    @property
    def camera(self) -> PinholeCamera:
        """Return the camera model."""
        return self._camera

    @property
    def last_ba_result(self) -> BAResult | None:
        """Return the result of the most recent optimization, if any."""
        return self._last_ba_result
