"""Temporal feature matching between consecutive keyframes."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class TemporalMatches:
    """Container for temporal feature matches between consecutive frames.

    Attributes:
        prev_indices: Indices into previous frame's features
        curr_indices: Indices into current frame's features
        distances: Hamming distances between matched descriptors
    """

    prev_indices: np.ndarray  # (N,) int
    curr_indices: np.ndarray  # (N,) int
    distances: np.ndarray  # (N,) float32

    def __len__(self) -> int:
        """Return number of matches."""
        return len(self.prev_indices)

    @classmethod
    def empty(cls) -> TemporalMatches:
        """Return a match set with no matches."""
        return cls(
            prev_indices=np.empty(0, dtype=np.int32),
            curr_indices=np.empty(0, dtype=np.int32),
            distances=np.empty(0, dtype=np.float32),
        )


class TemporalMatcher:
    """Matches descriptors of consecutive frames one-to-one.

    Brute-force Hamming matching with Lowe's ratio test. Because the match
    chain may hold at most one hop per frame transition, a current feature
    claimed by several previous features keeps only its closest match.
    """

    def __init__(
        self,
        ratio_threshold: float = 0.75,
        max_hamming_distance: int = 50,
    ) -> None:
        """Initialize temporal matcher.

        Args:
            ratio_threshold: Lowe's ratio test threshold. A match is accepted
                only if best_distance < ratio * second_best_distance.
            max_hamming_distance: Maximum Hamming distance for a valid match
        """
        self._bf_matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
        self._ratio_threshold = ratio_threshold
        self._max_distance = max_hamming_distance

    def match(
        self, descriptors_prev: np.ndarray | None, descriptors_curr: np.ndarray | None
    ) -> TemporalMatches:
        """Match previous-frame descriptors to current-frame descriptors.

        Args:
            descriptors_prev: Nx32 descriptors of the previous frame
            descriptors_curr: Mx32 descriptors of the current frame

        Returns:
            TemporalMatches, one-to-one in both directions
        """
        if (
            descriptors_prev is None
            or descriptors_curr is None
            or len(descriptors_prev) == 0
            or len(descriptors_curr) == 0
        ):
            return TemporalMatches.empty()

        knn_matches = self._bf_matcher.knnMatch(descriptors_prev, descriptors_curr, k=2)

        # curr index -> (distance, prev index)
        best_for_curr: dict[int, tuple[float, int]] = {}

        for match_pair in knn_matches:
            if not match_pair:
                continue

            best = match_pair[0]
            if best.distance > self._max_distance:
                continue
            if (
                len(match_pair) > 1
                and best.distance > self._ratio_threshold * match_pair[1].distance
            ):
                continue

            current = best_for_curr.get(best.trainIdx)
            if current is None or best.distance < current[0]:
                best_for_curr[best.trainIdx] = (best.distance, best.queryIdx)

        if not best_for_curr:
            return TemporalMatches.empty()

        curr_indices = np.array(sorted(best_for_curr), dtype=np.int32)
        prev_indices = np.array([best_for_curr[i][1] for i in curr_indices], dtype=np.int32)
        distances = np.array([best_for_curr[i][0] for i in curr_indices], dtype=np.float32)

        return TemporalMatches(
            prev_indices=prev_indices, curr_indices=curr_indices, distances=distances
        )

    @property
    def ratio_threshold(self) -> float:
        """Return the ratio test threshold."""
        return self._ratio_threshold

    @property
    def max_hamming_distance(self) -> int:
        """Return the maximum Hamming distance threshold."""
        return self._max_distance
