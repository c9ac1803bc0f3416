"""Operations on the temporal match chain."""

from __future__ import annotations

import weakref

from .features import Point2DFeature, Point3DFeature


def link_features(prev: Point2DFeature, curr: Point2DFeature) -> None:
    """Chain a feature to its match in the following frame.

    Args:
        prev: Feature in the earlier frame
        curr: Feature in the later frame

    Raises:
        ValueError: If both features belong to the same frame, or either
            side already has a live match for this frame transition
    """
    if prev is curr:
        raise ValueError("Cannot link a feature to itself")
    if prev.frame is not None and prev.frame is curr.frame:
        raise ValueError("Cannot link two features of the same frame")
    if prev.next_match is not None or curr.prev_match is not None:
        raise ValueError("Feature already matched across this frame transition")

    prev.next_matches.append(weakref.ref(curr))
    prev.best_next_match_id = len(prev.next_matches) - 1
    curr.prev_matches.append(weakref.ref(prev))
    curr.best_prev_match_id = len(curr.prev_matches) - 1


def sever_match(prev: Point2DFeature, curr: Point2DFeature) -> None:
    """Break the chain between two matched features. Idempotent."""
    prev.best_next_match_id = -1
    curr.best_prev_match_id = -1


def find_feature_correspondences(
    features: list[Point2DFeature], n_views: int
) -> list[list[Point2DFeature]]:
    """Collect chains of n_views features ending at the given features.

    Args:
        features: Features of the most recent frame
        n_views: Number of consecutive frames each chain must span

    Returns:
        One list per complete chain, ordered oldest to newest
    """
    if n_views < 1:
        raise ValueError(f"n_views must be positive, got {n_views}")

    correspondences = []
    for feature in features:
        chain = [feature]
        current = feature
        for _ in range(n_views - 1):
            current = current.prev_match
            if current is None:
                break
            chain.append(current)

        if len(chain) == n_views:
            chain.reverse()
            correspondences.append(chain)

    return correspondences


def detach_point(point: Point3DFeature) -> None:
    """Remove a scene point from every live observer."""
    for feature in point.observers():
        if feature.feature_3d is point:
            feature.feature_3d = None
    point.features_2d.clear()
