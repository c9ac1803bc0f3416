"""Estimation modes of the sliding-window estimator.

A mode decides where frame poses come from and which pose variables the
bundle adjustment refines:

- SelfPoseMode: visual odometry. Poses are solved from the images
  (essential matrix at bootstrap, PnP afterwards) and every non-fixed
  frame pose is an optimization variable.
- PoseAnchoredMode: poses come from the odometry source through a
  camera-odometry extrinsic. Frame poses stay fixed; only the extrinsic
  (and the scene points) are refined.

Pose variables are packed as (qw, qx, qy, qz, tx, ty, tz) blocks. The
quaternion is normalized when the rotation is rebuilt, so the solver may
move freely in R^4.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from ..geometry import SE3, quaternions_to_rotations
from .pose_estimation import PoseEstimate, estimate_absolute_pose, estimate_relative_pose

if TYPE_CHECKING:
    from ..sparse_graph import Frame
    from .config import SlidingWindowConfig

POSE_BLOCK_SIZE = 7


def _pack_pose(pose: SE3) -> np.ndarray:
    return np.concatenate([pose.quaternion, pose.translation])


class EstimationMode(ABC):
    """Strategy for pose sourcing and pose parameterization."""

    name: str = ""

    # Reprojection and disparity tests during triangulation, and pixel
    # pruning of 2D-3D matches in steady state
    check_pixel_error: bool = True

    @property
    def extrinsic(self) -> SE3 | None:
        """Return the camera pose in the odometry frame, if this mode has one."""
        return None

    @abstractmethod
    def world_to_camera(self, frame: Frame) -> SE3:
        """Return the world-to-camera transform of a frame."""

    @abstractmethod
    def initialize(self, frame: Frame) -> None:
        """Set the pose of the first frame after a clear."""

    @abstractmethod
    def predict(self, frame: Frame, prev: Frame, R_rel: np.ndarray, t_rel: np.ndarray) -> None:
        """Set a prior pose for a new frame before any correspondence work."""

    @abstractmethod
    def bootstrap(
        self,
        prev: Frame,
        curr: Frame,
        rays_prev: np.ndarray,
        rays_curr: np.ndarray,
        config: SlidingWindowConfig,
    ) -> PoseEstimate:
        """Compute the second frame's pose from two-view correspondences."""

    @abstractmethod
    def localize(
        self,
        prev: Frame,
        curr: Frame,
        points_3d: np.ndarray,
        rays: np.ndarray,
        R_rel: np.ndarray,
        config: SlidingWindowConfig,
    ) -> bool:
        """Compute a steady-state frame's pose from 2D-3D matches."""

    @abstractmethod
    def pack_parameters(self, frames: list[Frame], n_fixed: int) -> np.ndarray:
        """Return the initial pose variables of a window."""

    @abstractmethod
    def unpack_poses(
        self, params: np.ndarray, frames: list[Frame], n_fixed: int
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return (Fx3x3 rotations, Fx3 translations) world-to-camera for each frame."""

    @abstractmethod
    def pose_columns(self, frame_idx: int, n_fixed: int) -> range:
        """Return the pose-variable columns a frame's residuals depend on."""

    @abstractmethod
    def apply_parameters(self, params: np.ndarray, frames: list[Frame], n_fixed: int) -> None:
        """Write optimized pose variables back."""


class SelfPoseMode(EstimationMode):
    """Visual odometry: the estimator solves each frame's camera pose."""

    name = "self_pose"
    check_pixel_error = True

    def world_to_camera(self, frame: Frame) -> SE3:
        return frame.camera_pose

    def initialize(self, frame: Frame) -> None:
        frame.camera_pose = SE3.identity()

    def predict(self, frame: Frame, prev: Frame, R_rel: np.ndarray, t_rel: np.ndarray) -> None:
        R_rel = np.asarray(R_rel, dtype=np.float64)
        frame.camera_pose = SE3(
            rotation=R_rel @ prev.camera_pose.rotation,
            translation=R_rel @ prev.camera_pose.translation + np.asarray(t_rel).flatten(),
        )

    def bootstrap(
        self,
        prev: Frame,
        curr: Frame,
        rays_prev: np.ndarray,
        rays_curr: np.ndarray,
        config: SlidingWindowConfig,
    ) -> PoseEstimate:
        estimate = estimate_relative_pose(
            rays_prev, rays_curr, threshold=config.normalized_reproj_thresh
        )
        if estimate.success:
            estimate.pose = estimate.pose @ prev.camera_pose
            curr.camera_pose = estimate.pose
        return estimate

    def localize(
        self,
        prev: Frame,
        curr: Frame,
        points_3d: np.ndarray,
        rays: np.ndarray,
        R_rel: np.ndarray,
        config: SlidingWindowConfig,
    ) -> bool:
        if len(points_3d) < config.min_2d3d_correspondences:
            return False

        # Rotation seeded from the predicted motion, translation from the previous frame
        seed = SE3(
            rotation=np.asarray(R_rel, dtype=np.float64) @ prev.camera_pose.rotation,
            translation=prev.camera_pose.translation,
        )
        estimate = estimate_absolute_pose(
            points_3d, rays, seed, threshold=config.normalized_reproj_thresh
        )
        if not estimate.success:
            return False

        curr.camera_pose = estimate.pose
        return True

    def pack_parameters(self, frames: list[Frame], n_fixed: int) -> np.ndarray:
        blocks = [_pack_pose(frame.camera_pose) for frame in frames[n_fixed:]]
        if not blocks:
            return np.zeros(0)
        return np.concatenate(blocks)

    def unpack_poses(
        self, params: np.ndarray, frames: list[Frame], n_fixed: int
    ) -> tuple[np.ndarray, np.ndarray]:
        rotations = np.empty((len(frames), 3, 3))
        translations = np.empty((len(frames), 3))

        for idx in range(min(n_fixed, len(frames))):
            rotations[idx] = frames[idx].camera_pose.rotation
            translations[idx] = frames[idx].camera_pose.translation

        n_free = len(frames) - n_fixed
        if n_free > 0:
            blocks = params[: n_free * POSE_BLOCK_SIZE].reshape(n_free, POSE_BLOCK_SIZE)
            rotations[n_fixed:] = quaternions_to_rotations(blocks[:, :4])
            translations[n_fixed:] = blocks[:, 4:]

        return rotations, translations

    def pose_columns(self, frame_idx: int, n_fixed: int) -> range:
        if frame_idx < n_fixed:
            return range(0)
        start = (frame_idx - n_fixed) * POSE_BLOCK_SIZE
        return range(start, start + POSE_BLOCK_SIZE)

    def apply_parameters(self, params: np.ndarray, frames: list[Frame], n_fixed: int) -> None:
        rotations, translations = self.unpack_poses(params, frames, n_fixed)
        for idx in range(n_fixed, len(frames)):
            frames[idx].camera_pose = SE3(rotation=rotations[idx], translation=translations[idx])


class PoseAnchoredMode(EstimationMode):
    """Frame poses from the odometry source through a camera-odometry extrinsic.

    Args:
        extrinsic: Camera pose in the odometry (body) frame, T_odo_cam
    """

    name = "pose_anchored"
    check_pixel_error = False

    def __init__(self, extrinsic: SE3 | None = None) -> None:
        """Initialize with an extrinsic guess (identity if omitted)."""
        self._extrinsic = extrinsic.copy() if extrinsic is not None else SE3.identity()

    @property
    def extrinsic(self) -> SE3:
        """Return the camera pose in the odometry frame."""
        return self._extrinsic

    @extrinsic.setter
    def extrinsic(self, value: SE3) -> None:
        self._extrinsic = value.copy()

    def world_to_camera(self, frame: Frame) -> SE3:
        if frame.system_pose is None:
            raise ValueError("Pose-anchored estimation needs frames with a system pose")
        return self._extrinsic.inverse() @ frame.system_pose.to_se3().inverse()

    def initialize(self, frame: Frame) -> None:
        frame.camera_pose = self.world_to_camera(frame)

    def predict(self, frame: Frame, prev: Frame, R_rel: np.ndarray, t_rel: np.ndarray) -> None:
        frame.camera_pose = self.world_to_camera(frame)

    def bootstrap(
        self,
        prev: Frame,
        curr: Frame,
        rays_prev: np.ndarray,
        rays_curr: np.ndarray,
        config: SlidingWindowConfig,
    ) -> PoseEstimate:
        n_points = len(rays_prev)
        curr.camera_pose = self.world_to_camera(curr)
        return PoseEstimate(
            success=True,
            pose=curr.camera_pose,
            inliers=np.ones(n_points, dtype=bool),
            num_inliers=n_points,
        )

    def localize(
        self,
        prev: Frame,
        curr: Frame,
        points_3d: np.ndarray,
        rays: np.ndarray,
        R_rel: np.ndarray,
        config: SlidingWindowConfig,
    ) -> bool:
        curr.camera_pose = self.world_to_camera(curr)
        return True

    def pack_parameters(self, frames: list[Frame], n_fixed: int) -> np.ndarray:
        # Optimized as T_cam_odo, the inverse of the stored extrinsic
        return _pack_pose(self._extrinsic.inverse())

    def unpack_poses(
        self, params: np.ndarray, frames: list[Frame], n_fixed: int
    ) -> tuple[np.ndarray, np.ndarray]:
        R_co = quaternions_to_rotations(params[:4])[0]
        t_co = params[4:POSE_BLOCK_SIZE]

        rotations = np.empty((len(frames), 3, 3))
        translations = np.empty((len(frames), 3))
        for idx, frame in enumerate(frames):
            T_odo_world = frame.system_pose.to_se3().inverse()
            rotations[idx] = R_co @ T_odo_world.rotation
            translations[idx] = R_co @ T_odo_world.translation + t_co

        return rotations, translations

    def pose_columns(self, frame_idx: int, n_fixed: int) -> range:
        return range(POSE_BLOCK_SIZE)

    def apply_parameters(self, params: np.ndarray, frames: list[Frame], n_fixed: int) -> None:
        R_co = quaternions_to_rotations(params[:4])[0]
        self._extrinsic = SE3(rotation=R_co, translation=params[4:POSE_BLOCK_SIZE]).inverse()
        for frame in frames:
            frame.camera_pose = self.world_to_camera(frame)
