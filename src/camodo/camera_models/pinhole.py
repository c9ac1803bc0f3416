"""Pinhole camera model with radial-tangential distortion."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import cv2
import numpy as np
import yaml

# Fixed-point undistortion iterations (cv2.undistortPoints stops after 5)
UNDISTORT_CRITERIA = (cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS, 30, 1e-9)


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass
class DistortionCoeffs:
    """Radial-tangential distortion coefficients."""

    k1: float = 0.0  # Radial distortion coefficient 1
    k2: float = 0.0  # Radial distortion coefficient 2
    p1: float = 0.0  # Tangential distortion coefficient 1
    p2: float = 0.0  # Tangential distortion coefficient 2

    def to_array(self) -> np.ndarray:
        """Return distortion coefficients as (4,) array for OpenCV."""
        return np.array([self.k1, self.k2, self.p1, self.p2], dtype=np.float64)

    @property
    def is_zero(self) -> bool:
        """Return True if the model is distortion-free."""
        return not np.any(self.to_array())


@dataclass
class PinholeCamera:
    """Monocular pinhole camera used for projection and back-projection.

    Attributes:
        intrinsics: Focal lengths and principal point
        distortion: Radial-tangential distortion coefficients
        image_size: (width, height) in pixels
        mask: Optional uint8 mask, 255 = usable, 0 = ignore (e.g. vehicle body)
    """

    intrinsics: CameraIntrinsics
    distortion: DistortionCoeffs = field(default_factory=DistortionCoeffs)
    image_size: tuple[int, int] = (640, 480)
    mask: np.ndarray | None = None

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> PinholeCamera:
        """Load a camera from an EuRoC-format sensor.yaml file.

        Args:
            yaml_path: Path to sensor.yaml

        Returns:
            PinholeCamera

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the calibration data is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        # Parse intrinsics [fu, fv, cu, cv]
        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        # Parse distortion coefficients [k1, k2, p1, p2]
        distortion_list = data.get("distortion_coefficients", [0.0, 0.0, 0.0, 0.0])
        if len(distortion_list) != 4:
            raise ValueError(f"Invalid distortion coefficients in {yaml_path}")

        resolution = data.get("resolution", [640, 480])

        return cls(
            intrinsics=CameraIntrinsics(*[float(v) for v in intrinsics_list]),
            distortion=DistortionCoeffs(*[float(v) for v in distortion_list]),
            image_size=(int(resolution[0]), int(resolution[1])),
        )

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return 3x3 intrinsic matrix K."""
        return self.intrinsics.to_matrix()

    def space_to_plane(self, points_cam: np.ndarray) -> np.ndarray:
        """Project points in the camera frame to distorted pixel coordinates.

        Args:
            points_cam: (3,) or Nx3 points in the camera frame

        Returns:
            (2,) or Nx2 pixel coordinates
        """
        P = np.asarray(points_cam, dtype=np.float64)
        single = P.ndim == 1
        P = P.reshape(-1, 3)

        x = P[:, 0] / P[:, 2]
        y = P[:, 1] / P[:, 2]

        d = self.distortion
        r2 = x * x + y * y
        radial = 1.0 + d.k1 * r2 + d.k2 * r2 * r2
        x_d = x * radial + 2.0 * d.p1 * x * y + d.p2 * (r2 + 2.0 * x * x)
        y_d = y * radial + d.p1 * (r2 + 2.0 * y * y) + 2.0 * d.p2 * x * y

        k = self.intrinsics
        pixels = np.column_stack([k.fx * x_d + k.cx, k.fy * y_d + k.cy])
        return pixels[0] if single else pixels

    def lift_projective(self, pixels: np.ndarray) -> np.ndarray:
        """Back-project pixels to rays on the z = 1 plane of the camera frame.

        Args:
            pixels: (2,) or Nx2 pixel coordinates

        Returns:
            (3,) or Nx3 undistorted rays with unit depth
        """
        p = np.asarray(pixels, dtype=np.float64)
        single = p.ndim == 1
        p = p.reshape(-1, 2)
        if len(p) == 0:
            return np.zeros((0, 3))

        if self.distortion.is_zero:
            k = self.intrinsics
            normalized = np.column_stack([(p[:, 0] - k.cx) / k.fx, (p[:, 1] - k.cy) / k.fy])
        else:
            normalized = cv2.undistortPointsIter(
                p.reshape(-1, 1, 2),
                self.camera_matrix,
                self.distortion.to_array(),
                None,
                None,
                UNDISTORT_CRITERIA,
            ).reshape(-1, 2)

        rays = np.column_stack([normalized, np.ones(len(normalized))])
        return rays[0] if single else rays

    def project(
        self, points_world: np.ndarray, rotation: np.ndarray, translation: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Project world points through a world-to-camera pose.

        Args:
            points_world: Nx3 points in the world frame
            rotation: 3x3 rotation (world to camera)
            translation: (3,) translation (world to camera)

        Returns:
            Tuple of (Nx2 pixels, (N,) depths in the camera frame)
        """
        P = np.asarray(points_world, dtype=np.float64).reshape(-1, 3)
        P_cam = P @ np.asarray(rotation).T + np.asarray(translation).reshape(1, 3)
        return self.space_to_plane(P_cam), P_cam[:, 2]

    def reprojection_error(
        self,
        point_world: np.ndarray,
        rotation: np.ndarray,
        translation: np.ndarray,
        observed: np.ndarray,
    ) -> float:
        """Pixel distance between an observation and a projected 3D point.

        Args:
            point_world: 3D point in the world frame
            rotation: 3x3 rotation (world to camera)
            translation: (3,) translation (world to camera)
            observed: Observed pixel coordinates

        Returns:
            Euclidean reprojection error in pixels
        """
        pixels, _ = self.project(point_world, rotation, translation)
        return float(np.linalg.norm(pixels[0] - np.asarray(observed, dtype=np.float64)))
