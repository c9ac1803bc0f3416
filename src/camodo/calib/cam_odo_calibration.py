"""Camera-odometry hand-eye calibration from paired motion segments.

Each motion segment pairs relative camera motions A_i (from visual
odometry, known only up to a per-segment scale) with relative odometry
motions B_i. The unknown X = T_cam_odo satisfies

    A_i X = X B_i

which splits into a rotation part R_A R_X = R_X R_B and a translation
part (R_A - I) t_X + s_k t_A = R_X t_B, where s_k is the scale of
segment k.

The solver aligns rotation axes (and, for near-straight motions, the
translation directions) in closed form, solves the translation part
linearly, and then refines everything jointly with
scipy.optimize.least_squares.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np
import yaml
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

logger = logging.getLogger(__name__)


class MotionSegmentAccumulator(Protocol):
    """Collects paired motion segments and solves for the extrinsic."""

    def add_motion_segment(
        self, cam_motions: list[np.ndarray], odo_motions: list[np.ndarray]
    ) -> bool:
        """Add one segment; returns False if the two lists do not pair up."""
        ...

    def solve(self) -> np.ndarray:
        """Return the 4x4 camera pose in the odometry frame."""
        ...

    @property
    def current_motion_count(self) -> int:
        """Return number of motions accumulated so far."""
        ...

    @property
    def motion_count(self) -> int:
        """Return number of motions wanted before calibration is complete."""
        ...


@dataclass
class MotionSegment:
    """Paired relative motions of one unbroken visual track.

    Attributes:
        cam_motions: 4x4 camera motions C[i] @ inv(C[i-1]) (world-to-camera poses)
        odo_motions: 4x4 odometry motions inv(P[i]) @ P[i-1] (body-to-world poses)
    """

    cam_motions: list[np.ndarray]
    odo_motions: list[np.ndarray]

    def __len__(self) -> int:
        """Return number of motion pairs."""
        return len(self.cam_motions)


class CamOdoCalibration:
    """Hand-eye solver over accumulated motion segments.

    Rotations that the data cannot observe (e.g. roll about the direction
    of travel when the vehicle only drives straight) are resolved towards
    identity by a small prior.
    """

    def __init__(
        self,
        motion_count: int = 200,
        min_rotation_angle: float = np.deg2rad(0.5),
        prior_weight: float = 1e-3,
        max_iterations: int = 100,
    ) -> None:
        """Initialize calibration.

        Args:
            motion_count: Motions wanted before calibration counts as complete
            min_rotation_angle: Camera motions turning less than this (radians)
                constrain the rotation through their translation direction
            prior_weight: Weight of the identity prior on unobservable terms
            max_iterations: Maximum evaluations of the refinement solve
        """
        self._motion_count = motion_count
        self._min_rotation_angle = min_rotation_angle
        self._prior_weight = prior_weight
        self._max_iterations = max_iterations
        self._segments: list[MotionSegment] = []
        self._scales: np.ndarray = np.zeros(0)

    def add_motion_segment(
        self, cam_motions: list[np.ndarray], odo_motions: list[np.ndarray]
    ) -> bool:
        """Add a segment of paired motions.

        Args:
            cam_motions: 4x4 relative camera motions
            odo_motions: 4x4 relative odometry motions, one per camera motion

        Returns:
            False if the lists are empty or differ in length
        """
        if len(cam_motions) != len(odo_motions) or len(cam_motions) == 0:
            return False

        segment = MotionSegment(
            cam_motions=[np.asarray(m, dtype=np.float64).copy() for m in cam_motions],
            odo_motions=[np.asarray(m, dtype=np.float64).copy() for m in odo_motions],
        )
        self._segments.append(segment)
        logger.info(
            "Added motion segment %d with %d motions (%d total)",
            len(self._segments) - 1,
            len(segment),
            self.current_motion_count,
        )
        return True

    @property
    def current_motion_count(self) -> int:
        """Return number of motions accumulated so far."""
        return sum(len(segment) for segment in self._segments)

    @property
    def motion_count(self) -> int:
        """Return number of motions wanted before calibration is complete."""
        return self._motion_count

    @motion_count.setter
    def motion_count(self, value: int) -> None:
        self._motion_count = value

    @property
    def segments(self) -> list[MotionSegment]:
        """Return the accumulated segments."""
        return list(self._segments)

    @property
    def scales(self) -> np.ndarray:
        """Return per-segment visual odometry scales from the last solve."""
        return self._scales.copy()

    def solve(self) -> np.ndarray:
        """Estimate the camera pose in the odometry frame.

        Returns:
            4x4 transform mapping camera coordinates to odometry coordinates
            (identity if no motions were accumulated)
        """
        if self.current_motion_count == 0:
            logger.warning("No motion segments accumulated, returning identity")
            self._scales = np.zeros(0)
            return np.eye(4)

        R_A, t_A, R_B, t_B, seg_idx = self._stack()

        R_X = self._solve_rotation(R_A, t_A, R_B, t_B)
        t_X, scales = self._solve_translation(R_A, t_A, t_B, R_X, seg_idx)
        R_X, t_X, scales = self._refine(R_A, t_A, R_B, t_B, seg_idx, R_X, t_X, scales)

        self._scales = scales

        T_cam_odo = np.eye(4)
        T_cam_odo[:3, :3] = R_X
        T_cam_odo[:3, 3] = t_X
        return np.linalg.inv(T_cam_odo)

    def _stack(self) -> tuple[np.ndarray, ...]:
        cam = np.array([m for seg in self._segments for m in seg.cam_motions])
        odo = np.array([m for seg in self._segments for m in seg.odo_motions])
        seg_idx = np.concatenate(
            [np.full(len(seg), k, dtype=int) for k, seg in enumerate(self._segments)]
        )
        return cam[:, :3, :3], cam[:, :3, 3], odo[:, :3, :3], odo[:, :3, 3], seg_idx

    def _solve_rotation(
        self, R_A: np.ndarray, t_A: np.ndarray, R_B: np.ndarray, t_B: np.ndarray
    ) -> np.ndarray:
        """Closed-form rotation from axis (and direction) correspondences a = R_X b."""
        rotvec_A = Rotation.from_matrix(R_A).as_rotvec()
        rotvec_B = Rotation.from_matrix(R_B).as_rotvec()
        angle_A = np.linalg.norm(rotvec_A, axis=1)
        angle_B = np.linalg.norm(rotvec_B, axis=1)

        H = self._prior_weight * np.eye(3)

        turning = (angle_A >= self._min_rotation_angle) & (angle_B > 0.0)
        if np.any(turning):
            a = rotvec_A[turning] / angle_A[turning, None]
            b = rotvec_B[turning] / angle_B[turning, None]
            H += np.einsum("n,ni,nj->ij", angle_A[turning], b, a)

        # Near-pure translations: the unit translation directions align
        norm_A = np.linalg.norm(t_A, axis=1)
        norm_B = np.linalg.norm(t_B, axis=1)
        straight = (angle_A < self._min_rotation_angle) & (norm_A > 1e-9) & (norm_B > 1e-9)
        if np.any(straight):
            a = t_A[straight] / norm_A[straight, None]
            b = t_B[straight] / norm_B[straight, None]
            H += np.einsum("ni,nj->ij", b, a)

        logger.debug(
            "Rotation from %d turning and %d straight motions",
            int(np.sum(turning)),
            int(np.sum(straight)),
        )

        # Kabsch: maximize trace(R_X H)
        U, _, Vt = np.linalg.svd(H)
        D = np.diag([1.0, 1.0, np.sign(np.linalg.det(Vt.T @ U.T))])
        return Vt.T @ D @ U.T

    def _solve_translation(
        self,
        R_A: np.ndarray,
        t_A: np.ndarray,
        t_B: np.ndarray,
        R_X: np.ndarray,
        seg_idx: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Linear solve of (R_A - I) t_X + s_k t_A = R_X t_B."""
        n_motions = len(R_A)
        n_segments = len(self._segments)

        A = np.zeros((3 * n_motions + 3, 3 + n_segments))
        b = np.zeros(3 * n_motions + 3)

        for i in range(n_motions):
            rows = slice(3 * i, 3 * i + 3)
            A[rows, :3] = R_A[i] - np.eye(3)
            A[rows, 3 + seg_idx[i]] = t_A[i]
            b[rows] = R_X @ t_B[i]

        # Pull unobservable translation components towards zero
        A[3 * n_motions :, :3] = np.sqrt(self._prior_weight) * np.eye(3)

        x, *_ = np.linalg.lstsq(A, b, rcond=None)
        return x[:3], x[3:]

    def _refine(
        self,
        R_A: np.ndarray,
        t_A: np.ndarray,
        R_B: np.ndarray,
        t_B: np.ndarray,
        seg_idx: np.ndarray,
        R_X: np.ndarray,
        t_X: np.ndarray,
        scales: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Jointly refine rotation, translation and scales."""
        if len(R_A) < 2:
            return R_X, t_X, scales

        rot_A = Rotation.from_matrix(R_A)
        rot_B_inv = Rotation.from_matrix(R_B).inv()
        I = np.eye(3)

        def residuals(params: np.ndarray) -> np.ndarray:
            rot_X = Rotation.from_rotvec(params[:3])
            tx = params[3:6]
            s = params[6:]

            # A X B^-1 X^-1 should be the identity rotation
            r_rot = (rot_A * rot_X * rot_B_inv * rot_X.inv()).as_rotvec()
            r_trans = (
                np.einsum("nij,j->ni", R_A - I, tx)
                + s[seg_idx, None] * t_A
                - rot_X.apply(t_B)
            )
            return np.concatenate([r_rot.ravel(), r_trans.ravel()])

        x0 = np.concatenate([Rotation.from_matrix(R_X).as_rotvec(), t_X, scales])
        initial_cost = 0.5 * float(np.sum(residuals(x0) ** 2))

        result = least_squares(
            residuals, x0, method="trf", max_nfev=self._max_iterations, verbose=0
        )

        final_cost = 0.5 * float(np.sum(result.fun**2))
        if not np.all(np.isfinite(result.x)) or final_cost > initial_cost:
            logger.debug("Refinement did not improve (%.3g -> %.3g)", initial_cost, final_cost)
            return R_X, t_X, scales

        logger.debug("Hand-eye refinement: cost %.3g -> %.3g", initial_cost, final_cost)
        return (
            Rotation.from_rotvec(result.x[:3]).as_matrix(),
            result.x[3:6],
            result.x[6:],
        )

    def write_motion_segments(self, path: str | Path) -> None:
        """Save the accumulated segments to a YAML file."""
        data = {
            "motion_count": self._motion_count,
            "segments": [
                {
                    "cam_motions": [np.asarray(m).ravel().tolist() for m in seg.cam_motions],
                    "odo_motions": [np.asarray(m).ravel().tolist() for m in seg.odo_motions],
                }
                for seg in self._segments
            ],
        }
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=None)

    def read_motion_segments(self, path: str | Path) -> int:
        """Replace the accumulated segments with those stored in a YAML file.

        Returns:
            Number of segments loaded

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If a stored segment is malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Motion segment file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        segments = []
        for k, entry in enumerate(data.get("segments", [])):
            cam = [np.array(m, dtype=np.float64).reshape(4, 4) for m in entry["cam_motions"]]
            odo = [np.array(m, dtype=np.float64).reshape(4, 4) for m in entry["odo_motions"]]
            if len(cam) != len(odo) or not cam:
                raise ValueError(f"Malformed motion segment {k} in {path}")
            segments.append(MotionSegment(cam_motions=cam, odo_motions=odo))

        self._segments = segments
        self._motion_count = int(data.get("motion_count", self._motion_count))
        logger.info("Loaded %d motion segments from %s", len(segments), path)
        return len(segments)
