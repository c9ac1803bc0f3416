"""Tests for detection, temporal matching and the feature tracker."""

import numpy as np
import pytest

from camodo.visual_odometry import (
    FeatureDetector,
    SlidingWindowConfig,
    TemporalFeatureTracker,
    TemporalMatcher,
)
from camodo.visual_odometry.feature_detector import combine_masks

from conftest import camera_center, make_frames, random_descriptors


@pytest.fixture
def textured_image() -> np.ndarray:
    """Random blocky texture that gives plenty of corners."""
    rng = np.random.default_rng(0)
    blocks = rng.integers(0, 256, size=(48, 64), dtype=np.uint8)
    return np.kron(blocks, np.ones((10, 10), dtype=np.uint8))


class TestFeatureDetector:
    """Test suite for FeatureDetector."""

    def test_detects_features(self, textured_image: np.ndarray):
        """Test that a textured image yields keypoints and descriptors."""
        features = FeatureDetector(n_features=500).detect(textured_image)

        assert len(features) > 50
        assert features.descriptors.shape == (len(features), 32)

    def test_mask_excludes_region(self, textured_image: np.ndarray):
        """Test that no keypoint is detected in the masked-out half."""
        mask = np.full(textured_image.shape, 255, dtype=np.uint8)
        mask[:, :320] = 0

        features = FeatureDetector(n_features=500).detect(textured_image, mask)

        assert len(features) > 0
        assert np.all(features.points[:, 0] >= 310.0)

    def test_blank_image(self):
        """Test that a flat image yields no features."""
        features = FeatureDetector().detect(np.zeros((100, 100), dtype=np.uint8))

        assert len(features) == 0
        assert features.descriptors is None

    def test_combine_masks(self):
        """Test mask intersection."""
        a = np.full((2, 2), 255, dtype=np.uint8)
        b = a.copy()
        b[0, 0] = 0

        assert combine_masks(None, None) is None
        np.testing.assert_array_equal(combine_masks(a, None), a)
        assert combine_masks(a, b)[0, 0] == 0


class TestTemporalMatcher:
    """Test suite for TemporalMatcher."""

    def test_matches_identical_descriptors(self):
        """Test one-to-one matching of permuted descriptors."""
        desc = random_descriptors(50, seed=1)
        perm = np.random.default_rng(2).permutation(50)

        matches = TemporalMatcher().match(desc, desc[perm])

        assert len(matches) == 50
        np.testing.assert_array_equal(perm[matches.curr_indices], matches.prev_indices)
        np.testing.assert_array_equal(matches.distances, 0.0)

    def test_current_feature_claimed_once(self):
        """Test that duplicate previous descriptors map to one current feature."""
        desc = random_descriptors(10, seed=3)
        prev = np.vstack([desc, desc[:1]])

        matches = TemporalMatcher(ratio_threshold=1.0).match(prev, desc)

        assert len(np.unique(matches.curr_indices)) == len(matches)
        assert len(np.unique(matches.prev_indices)) == len(matches)

    def test_empty_input(self):
        """Test that missing descriptors give no matches."""
        assert len(TemporalMatcher().match(None, random_descriptors(5, seed=4))) == 0


class TestTemporalFeatureTracker:
    """Test suite for TemporalFeatureTracker with caller-supplied features."""

    def _frames(self, camera, landmarks, poses, seed):
        return make_frames(
            camera,
            landmarks,
            poses,
            descriptors=random_descriptors(len(landmarks), seed),
            link=False,
        )

    def test_tracks_segment(self, camera, landmarks, sideways_poses):
        """Test that consecutive frames extend one segment."""
        config = SlidingWindowConfig(window_size=5, n_free=3)
        tracker = TemporalFeatureTracker(camera, config=config)
        frames = self._frames(camera, landmarks, sideways_poses[:4], seed=10)

        results = [tracker.add_frame(frame) for frame in frames]

        assert all(ok for ok, _, _ in results)
        assert tracker.get_frames() == frames
        assert len(tracker.get_poses()) == 4
        assert len(tracker.get_scene_points()) == len(landmarks)

        # Relative motion of the last step: 1 bootstrap unit along -x
        _, R_rel, t_rel = results[-1]
        np.testing.assert_allclose(R_rel, np.eye(3), atol=1e-3)
        np.testing.assert_allclose(t_rel, [-1.0, 0.0, 0.0], atol=1e-3)
        np.testing.assert_allclose(
            camera_center(frames[3].camera_pose), [3.0, 0.0, 0.0], atol=1e-3
        )

    def test_break_keeps_finished_segment(self, camera, landmarks, sideways_poses):
        """Test that a break reports the old segment until the next frame."""
        tracker = TemporalFeatureTracker(camera)
        first = self._frames(camera, landmarks, sideways_poses[:3], seed=10)
        second = self._frames(camera, landmarks, sideways_poses[3:5], seed=20)

        for frame in first:
            assert tracker.add_frame(frame)[0]

        ok, R_rel, t_rel = tracker.add_frame(second[0])

        assert not ok
        np.testing.assert_array_equal(R_rel, np.eye(3))
        np.testing.assert_array_equal(t_rel, np.zeros(3))
        assert tracker.get_frames() == first

        assert tracker.add_frame(second[1])[0]
        assert tracker.get_frames() == second
        np.testing.assert_allclose(tracker.get_poses()[0], np.eye(4))

    def test_first_frame_accepted(self, camera, landmarks, sideways_poses):
        """Test that the first frame starts a segment at the origin."""
        tracker = TemporalFeatureTracker(camera)
        frame = self._frames(camera, landmarks, sideways_poses[:1], seed=10)[0]

        ok, R_rel, _ = tracker.add_frame(frame)

        assert ok
        np.testing.assert_array_equal(R_rel, np.eye(3))
        assert tracker.odometry.window_size() == 1
