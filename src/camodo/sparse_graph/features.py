"""2D observations and 3D scene points of the correspondence graph."""

from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .frame import Frame


@dataclass(eq=False)
class Point2DFeature:
    """A single 2D detection in one frame.

    The feature owns its link to the 3D point it supports. Temporal matches
    to the same physical point in the neighbouring frames are stored as
    weak references; the best-match indices select which candidate forms
    the chain (-1 means the chain is broken at that side).

    Attributes:
        keypoint: Pixel coordinates (u, v)
        descriptor: Optional binary descriptor
        feature_3d: Triangulated scene point, or None
        prev_matches: Candidate matches in the previous frame (weak)
        next_matches: Candidate matches in the next frame (weak)
        best_prev_match_id: Index into prev_matches, -1 if none
        best_next_match_id: Index into next_matches, -1 if none
    """

    keypoint: np.ndarray  # (2,) float64
    descriptor: np.ndarray | None = None
    feature_3d: Point3DFeature | None = None
    prev_matches: list[weakref.ref[Point2DFeature]] = field(default_factory=list)
    next_matches: list[weakref.ref[Point2DFeature]] = field(default_factory=list)
    best_prev_match_id: int = -1
    best_next_match_id: int = -1
    _frame: weakref.ref[Frame] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Ensure keypoint is a flat float array."""
        self.keypoint = np.asarray(self.keypoint, dtype=np.float64).flatten()
        if self.keypoint.shape != (2,):
            raise ValueError(f"Keypoint must be (2,), got {self.keypoint.shape}")

    @property
    def frame(self) -> Frame | None:
        """Return the owning frame if it is still alive."""
        return self._frame() if self._frame is not None else None

    @property
    def prev_match(self) -> Point2DFeature | None:
        """Return the best match in the previous frame, if any."""
        return _resolve(self.prev_matches, self.best_prev_match_id)

    @property
    def next_match(self) -> Point2DFeature | None:
        """Return the best match in the next frame, if any."""
        return _resolve(self.next_matches, self.best_next_match_id)


@dataclass(eq=False)
class Point3DFeature:
    """A triangulated scene point and the 2D features observing it.

    2D features keep the point alive through their strong ``feature_3d``
    link; the observer list here holds weak references only.

    Attributes:
        point: 3D position in the world frame
        features_2d: Weak references to observing 2D features
    """

    point: np.ndarray  # (3,) float64
    features_2d: list[weakref.ref[Point2DFeature]] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Ensure point is a flat float array."""
        self.point = np.asarray(self.point, dtype=np.float64).flatten()
        if self.point.shape != (3,):
            raise ValueError(f"Point must be (3,), got {self.point.shape}")

    def add_observer(self, feature: Point2DFeature) -> None:
        """Link a 2D feature to this point in both directions."""
        feature.feature_3d = self
        self.features_2d.append(weakref.ref(feature))

    def observers(self) -> list[Point2DFeature]:
        """Return live observers, skipping features that were freed."""
        live = []
        for ref in self.features_2d:
            feature = ref()
            if feature is not None:
                live.append(feature)
        return live

    @property
    def num_observations(self) -> int:
        """Return number of live observers."""
        return len(self.observers())


def _resolve(
    matches: list[weakref.ref[Point2DFeature]], idx: int
) -> Point2DFeature | None:
    if idx < 0 or idx >= len(matches):
        return None
    return matches[idx]()
