"""Incremental feature tracking with windowed visual odometry."""

from __future__ import annotations

import logging
from typing import Protocol

import numpy as np

from ..camera_models import PinholeCamera
from ..sparse_graph import Frame, link_features
from .config import SlidingWindowConfig
from .estimation_modes import SelfPoseMode
from .feature_detector import FeatureDetector, combine_masks
from .sliding_window_ba import SlidingWindowBA
from .temporal_matcher import TemporalMatcher

logger = logging.getLogger(__name__)


class FeatureTracker(Protocol):
    """Builds the correspondence graph frame by frame.

    A tracker keeps one motion segment: the frames accepted since the last
    track break. After add_frame reports a break, get_poses() and
    get_frames() still describe the finished segment until the next
    add_frame call, which starts a new segment seeded by the frame that
    broke the track.
    """

    def add_frame(
        self, frame: Frame, mask: np.ndarray | None = None
    ) -> tuple[bool, np.ndarray, np.ndarray]:
        """Extend the track with a frame.

        Returns:
            Tuple of (ok, R_rel, t_rel); ok=False signals a track break
        """
        ...

    def get_poses(self) -> list[np.ndarray]:
        """Return world-to-camera 4x4 poses of the segment's frames."""
        ...

    def get_frames(self) -> list[Frame]:
        """Return the segment's frames in acceptance order."""
        ...

    def get_scene_points(self) -> np.ndarray:
        """Return an Mx3 array of current scene points."""
        ...


class TemporalFeatureTracker:
    """ORB tracker that chains matches and runs sliding-window visual odometry.

    Each new frame is matched against the previous accepted frame, the
    matches are linked into the temporal chain and the frame is handed to
    a SlidingWindowBA in self-pose mode. The track breaks when too few
    matches exist or the estimator cannot place the frame.
    """

    def __init__(
        self,
        camera: PinholeCamera,
        detector: FeatureDetector | None = None,
        matcher: TemporalMatcher | None = None,
        config: SlidingWindowConfig | None = None,
        min_matches: int = 20,
    ) -> None:
        """Initialize tracker.

        Args:
            camera: Camera model (its mask is applied during detection)
            detector: Feature detector
            matcher: Temporal matcher
            config: Sliding-window configuration of the odometry estimator
            min_matches: Minimum temporal matches to keep the track alive
        """
        self._camera = camera
        self._detector = detector or FeatureDetector()
        self._matcher = matcher or TemporalMatcher()
        self._odometry = SlidingWindowBA(camera, SelfPoseMode(), config)
        self._min_matches = min_matches

        self._segment: list[Frame] = []
        self._descriptors: dict[int, np.ndarray | None] = {}
        self._seed: Frame | None = None

        self._R_rel = np.eye(3)
        self._t_rel = np.zeros(3)

    def add_frame(
        self, frame: Frame, mask: np.ndarray | None = None
    ) -> tuple[bool, np.ndarray, np.ndarray]:
        """Extend the current segment with a frame.

        Args:
            frame: New keyframe with its image
            mask: Optional uint8 mask of regions to ignore (0)

        Returns:
            Tuple of (ok, R_rel, t_rel) where R_rel, t_rel map the previous
            camera frame into this one; identity on a break or a new segment
        """
        if self._seed is not None:
            seed, self._seed = self._seed, None
            self._start_segment(seed)

        self._extract(frame, mask)

        if not self._segment:
            self._start_segment(frame)
            return True, np.eye(3), np.zeros(3)

        prev = self._segment[-1]
        matches = self._matcher.match(self._descriptors[id(prev)], self._descriptors[id(frame)])

        if len(matches) < self._min_matches:
            logger.debug("Track break: only %d temporal matches", len(matches))
            return self._break(frame)

        for prev_idx, curr_idx in zip(matches.prev_indices, matches.curr_indices):
            link_features(prev.features_2d[prev_idx], frame.features_2d[curr_idx])

        if not self._odometry.add_frame(frame, self._R_rel, self._t_rel):
            logger.debug("Track break: visual odometry could not place frame")
            return self._break(frame)

        motion = frame.camera_pose @ prev.camera_pose.inverse()
        self._R_rel = motion.rotation
        self._t_rel = motion.translation
        self._segment.append(frame)
        self._descriptors = {id(frame): self._descriptors[id(frame)]}

        return True, self._R_rel.copy(), self._t_rel.copy()

    def _extract(self, frame: Frame, mask: np.ndarray | None) -> None:
        if frame.features_2d or frame.image is None:
            # Features supplied by the caller; match on their descriptors if all have one
            descriptors = [f.descriptor for f in frame.features_2d]
            if descriptors and all(d is not None for d in descriptors):
                self._descriptors[id(frame)] = np.array(descriptors, dtype=np.uint8)
            else:
                self._descriptors[id(frame)] = None
            return

        features = self._detector.detect(frame.image, combine_masks(self._camera.mask, mask))
        frame.add_keypoints(features.points, features.descriptors)
        self._descriptors[id(frame)] = features.descriptors

    def _start_segment(self, frame: Frame) -> None:
        # Keep only the descriptors needed for the next match
        self._descriptors = {id(frame): self._descriptors.get(id(frame))}
        self._segment = [frame]
        self._odometry.clear()
        self._odometry.add_frame(frame)
        self._R_rel = np.eye(3)
        self._t_rel = np.zeros(3)

    def _break(self, frame: Frame) -> tuple[bool, np.ndarray, np.ndarray]:
        self._seed = frame
        return False, np.eye(3), np.zeros(3)

    def get_poses(self) -> list[np.ndarray]:
        """Return world-to-camera 4x4 poses of the segment's frames."""
        return [frame.camera_pose.to_matrix() for frame in self._segment]

    def get_frames(self) -> list[Frame]:
        """Return the segment's frames in acceptance order."""
        return list(self._segment)

    def get_scene_points(self) -> np.ndarray:
        """Return an Mx3 array of scene points in the odometry window."""
        return self._odometry.scene_points()

    @property
    def odometry(self) -> SlidingWindowBA:
        """Return the visual odometry estimator."""
        return self._odometry
