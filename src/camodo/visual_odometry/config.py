"""Configuration for the sliding-window estimator."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SlidingWindowConfig:
    """Configuration for sliding-window bundle adjustment."""

    window_size: int = 10  # N: max frames in the window
    n_free: int = 7  # n: the first N - n frames are held fixed once the window is full
    min_disparity: float = 3.0  # Min pixel disparity of a new point between its two views
    nominal_focal_length: float = 300.0  # Converts pixel thresholds to normalized units
    reproj_error_thresh: float = 2.0  # Pose inlier threshold (pixels)
    tvt_reproj_error_thresh: float = 3.0  # Triangulation acceptance threshold (pixels)
    min_2d2d_correspondences: int = 10  # Needed to bootstrap from two views
    min_2d3d_correspondences: int = 10  # Needed for PnP and for bootstrap structure
    max_iterations: int = 20  # Max solver iterations per optimization
    loss: str = "cauchy"  # Robust loss function

    def __post_init__(self) -> None:
        """Validate window parameters."""
        if self.window_size < 1:
            raise ValueError(f"window_size must be positive, got {self.window_size}")
        if not 0 <= self.n_free <= self.window_size:
            raise ValueError(
                f"n_free must be in [0, {self.window_size}], got {self.n_free}"
            )

    @property
    def n_fixed_when_full(self) -> int:
        """Return number of leading frames fixed once more than N - n frames exist."""
        return self.window_size - self.n_free

    @property
    def normalized_reproj_thresh(self) -> float:
        """Return the pose inlier threshold on the z = 1 plane."""
        return self.reproj_error_thresh / self.nominal_focal_length
