"""Tests for the correspondence graph."""

import gc

import numpy as np
import pytest

from camodo.sparse_graph import (
    Frame,
    Point2DFeature,
    Point3DFeature,
    detach_point,
    find_feature_correspondences,
    link_features,
    sever_match,
)


@pytest.fixture
def chained_frames() -> list[Frame]:
    """Three frames with two features each, fully chained."""
    frames = []
    for i in range(3):
        frame = Frame(timestamp_ns=i)
        frame.add_keypoints(np.array([[10.0 + i, 20.0], [100.0 + i, 50.0]]))
        frames.append(frame)

    for prev, curr in zip(frames[:-1], frames[1:]):
        for f_prev, f_curr in zip(prev.features_2d, curr.features_2d):
            link_features(f_prev, f_curr)
    return frames


class TestFeatures:
    """Test suite for 2D and 3D features."""

    def test_keypoint_validation(self):
        """Test that keypoints must be 2-vectors."""
        with pytest.raises(ValueError, match="Keypoint must be"):
            Point2DFeature(keypoint=np.zeros(3))

    def test_frame_ownership(self):
        """Test that features know their owning frame."""
        frame = Frame()
        created = frame.add_keypoints(np.array([[1.0, 2.0]]), np.zeros((1, 32), dtype=np.uint8))

        assert created[0].frame is frame
        assert created[0].descriptor.shape == (32,)
        assert frame.num_features == 1

    def test_add_observer_links_both_ways(self):
        """Test that observers point at the scene point and vice versa."""
        point = Point3DFeature(point=np.array([0.0, 0.0, 5.0]))
        feature = Point2DFeature(keypoint=np.array([1.0, 1.0]))

        point.add_observer(feature)

        assert feature.feature_3d is point
        assert point.observers() == [feature]
        assert point.num_observations == 1

    def test_observers_are_weak(self):
        """Test that freed features drop out of the observer list."""
        point = Point3DFeature(point=np.array([0.0, 0.0, 5.0]))
        feature = Point2DFeature(keypoint=np.array([1.0, 1.0]))
        point.add_observer(feature)

        del feature
        gc.collect()

        assert point.observers() == []


class TestCorrespondences:
    """Test suite for match chain operations."""

    def test_link_sets_best_matches(self, chained_frames: list[Frame]):
        """Test that linking selects the new match on both sides."""
        f0 = chained_frames[0].features_2d[0]
        f1 = chained_frames[1].features_2d[0]

        assert f0.next_match is f1
        assert f1.prev_match is f0
        assert f0.prev_match is None

    def test_link_rejects_same_frame(self):
        """Test that two features of one frame cannot be linked."""
        frame = Frame()
        a, b = frame.add_keypoints(np.array([[0.0, 0.0], [1.0, 1.0]]))

        with pytest.raises(ValueError, match="same frame"):
            link_features(a, b)

    def test_link_rejects_second_match(self, chained_frames: list[Frame]):
        """Test that a feature holds at most one live match per transition."""
        f0 = chained_frames[0].features_2d[0]
        other = chained_frames[1].features_2d[1]

        with pytest.raises(ValueError, match="already matched"):
            link_features(f0, other)

    def test_sever_is_idempotent(self, chained_frames: list[Frame]):
        """Test that severing twice leaves the same state."""
        f0 = chained_frames[0].features_2d[0]
        f1 = chained_frames[1].features_2d[0]

        sever_match(f0, f1)
        sever_match(f0, f1)

        assert f0.best_next_match_id == -1
        assert f1.best_prev_match_id == -1
        assert f0.next_match is None

    def test_relink_after_sever(self, chained_frames: list[Frame]):
        """Test that a severed feature may be matched again."""
        f0 = chained_frames[0].features_2d[0]
        f1 = chained_frames[1].features_2d[0]
        sever_match(f0, f1)

        f_new = Point2DFeature(keypoint=np.array([5.0, 5.0]))
        chained_frames[1].add_feature(f_new)
        link_features(f0, f_new)

        assert f0.next_match is f_new
        assert len(f0.next_matches) == 2

    def test_find_correspondences_oldest_first(self, chained_frames: list[Frame]):
        """Test that chains are returned oldest to newest."""
        chains = find_feature_correspondences(chained_frames[2].features_2d, 3)

        assert len(chains) == 2
        for k, chain in enumerate(chains):
            assert [f.frame for f in chain] == chained_frames
            assert chain[0] is chained_frames[0].features_2d[k]

    def test_find_correspondences_skips_broken_chains(self, chained_frames: list[Frame]):
        """Test that a severed link shortens the chain below n_views."""
        sever_match(chained_frames[0].features_2d[1], chained_frames[1].features_2d[1])

        assert len(find_feature_correspondences(chained_frames[2].features_2d, 3)) == 1
        assert len(find_feature_correspondences(chained_frames[2].features_2d, 2)) == 2

    def test_find_correspondences_invalid_views(self, chained_frames: list[Frame]):
        """Test that n_views must be positive."""
        with pytest.raises(ValueError, match="n_views must be positive"):
            find_feature_correspondences(chained_frames[2].features_2d, 0)

    def test_detach_point(self, chained_frames: list[Frame]):
        """Test that detaching clears the point from every observer."""
        point = Point3DFeature(point=np.array([0.0, 0.0, 5.0]))
        for frame in chained_frames:
            point.add_observer(frame.features_2d[0])

        detach_point(point)

        for frame in chained_frames:
            assert frame.features_2d[0].feature_3d is None
            assert frame.features_with_3d() == []
        assert point.num_observations == 0
