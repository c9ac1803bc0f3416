"""Frame: one sampled instant of a camera together with its poses."""

from __future__ import annotations

import weakref
from dataclasses import dataclass, field

import numpy as np

from ..geometry import SE3, GpsInsPose, Odometry
from .features import Point2DFeature


@dataclass(eq=False)
class Frame:
    """One accepted keyframe.

    Pose and timestamp fields are fixed once the frame is created, except
    for ``camera_pose`` which the windowed estimator refines.

    Attributes:
        camera_id: Index of the capturing camera
        image: Raw image (may be None once features are extracted)
        camera_pose: World-to-camera transform (visual odometry estimate)
        system_pose: Interpolated odometry pose at capture time
        odometry_measurement: Raw odometry sample the frame was stamped with
        gps_ins_measurement: Interpolated GPS/INS sample, if a stream exists
        timestamp_ns: Capture time in nanoseconds
        features_2d: Ordered 2D detections owned by this frame
    """

    camera_id: int = 0
    image: np.ndarray | None = None
    camera_pose: SE3 = field(default_factory=SE3.identity)
    system_pose: Odometry | None = None
    odometry_measurement: Odometry | None = None
    gps_ins_measurement: GpsInsPose | None = None
    timestamp_ns: int = 0
    features_2d: list[Point2DFeature] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Claim ownership of any features passed at construction."""
        for feature in self.features_2d:
            feature._frame = weakref.ref(self)

    @property
    def timestamp(self) -> int:
        """Return capture time in nanoseconds."""
        return self.timestamp_ns

    def add_feature(self, feature: Point2DFeature) -> Point2DFeature:
        """Append a feature and record this frame as its owner."""
        feature._frame = weakref.ref(self)
        self.features_2d.append(feature)
        return feature

    def add_keypoints(
        self, keypoints: np.ndarray, descriptors: np.ndarray | None = None
    ) -> list[Point2DFeature]:
        """Create one feature per keypoint row.

        Args:
            keypoints: Nx2 pixel coordinates
            descriptors: Optional NxD descriptors

        Returns:
            The newly created features, in keypoint order
        """
        keypoints = np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)
        created = []
        for i, kp in enumerate(keypoints):
            desc = descriptors[i] if descriptors is not None else None
            created.append(self.add_feature(Point2DFeature(keypoint=kp, descriptor=desc)))
        return created

    def features_with_3d(self) -> list[Point2DFeature]:
        """Return features currently linked to a scene point."""
        return [f for f in self.features_2d if f.feature_3d is not None]

    @property
    def num_features(self) -> int:
        """Return number of 2D features."""
        return len(self.features_2d)
