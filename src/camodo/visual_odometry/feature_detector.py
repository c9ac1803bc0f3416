"""ORB keypoints for the temporal feature tracker.

Frames reaching the tracker carry only an image; detection fills in the
keypoints and descriptors that Frame.add_keypoints stores as 2D features.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class Features:
    """Keypoints detected in one camera image.

    Attributes:
        points: Nx2 pixel coordinates, in the order of the descriptors
        descriptors: Nx32 uint8 ORB descriptors, None for an image without keypoints
    """

    points: np.ndarray
    descriptors: np.ndarray | None

    def __len__(self) -> int:
        return len(self.points)


class FeatureDetector:
    """ORB detector restricted to the usable part of a vehicle camera image.

    The camera mask blanks out regions such as the vehicle body or the lens
    housing, which move with the camera and would otherwise be tracked as
    static scene structure.
    """

    def __init__(
        self,
        n_features: int = 1000,
        scale_factor: float = 1.2,
        n_levels: int = 8,
        edge_threshold: int = 31,
        fast_threshold: int = 20,
    ) -> None:
        """Initialize detector.

        Args:
            n_features: Keypoints kept per image, strongest first
            scale_factor: Image pyramid decimation ratio
            n_levels: Image pyramid levels
            edge_threshold: Image border (pixels) without keypoints
            fast_threshold: FAST corner threshold
        """
        self._orb = cv2.ORB_create(
            nfeatures=n_features,
            scaleFactor=scale_factor,
            nlevels=n_levels,
            edgeThreshold=edge_threshold,
            fastThreshold=fast_threshold,
        )
        self._n_features = n_features

    def detect(self, image: np.ndarray, mask: np.ndarray | None = None) -> Features:
        """Detect keypoints in a frame image.

        Args:
            image: uint8 image; BGR input is converted to grayscale
            mask: uint8 mask of the image size, 0 where no keypoint may lie

        Returns:
            Detected pixel coordinates and descriptors
        """
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        keypoints, descriptors = self._orb.detectAndCompute(image, mask)
        if not keypoints:
            return Features(points=np.empty((0, 2), dtype=np.float64), descriptors=None)

        points = np.array([kp.pt for kp in keypoints], dtype=np.float64)
        return Features(points=points, descriptors=descriptors)

    @property
    def n_features(self) -> int:
        return self._n_features


def combine_masks(*masks: np.ndarray | None) -> np.ndarray | None:
    """Intersect optional uint8 masks (255 = usable). Returns None if all are None."""
    result = None
    for mask in masks:
        if mask is None:
            continue
        result = mask.copy() if result is None else cv2.bitwise_and(result, mask)
    return result
