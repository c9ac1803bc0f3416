"""Sliding-window visual odometry and bundle adjustment."""

from .bundle_adjustment import BAResult, WindowBundleAdjuster
from .config import SlidingWindowConfig
from .estimation_modes import EstimationMode, PoseAnchoredMode, SelfPoseMode
from .feature_detector import FeatureDetector, Features
from .feature_tracker import FeatureTracker, TemporalFeatureTracker
from .pose_estimation import PoseEstimate, estimate_absolute_pose, estimate_relative_pose
from .sliding_window_ba import SlidingWindowBA
from .temporal_matcher import TemporalMatcher, TemporalMatches
from .triangulation import TriangulationResult, triangulate_dlt, triangulate_points

__all__ = [
    # Estimator
    "SlidingWindowBA",
    "SlidingWindowConfig",
    "EstimationMode",
    "SelfPoseMode",
    "PoseAnchoredMode",
    # Optimization
    "WindowBundleAdjuster",
    "BAResult",
    # Geometry
    "PoseEstimate",
    "estimate_relative_pose",
    "estimate_absolute_pose",
    "TriangulationResult",
    "triangulate_dlt",
    "triangulate_points",
    # Tracking
    "FeatureTracker",
    "TemporalFeatureTracker",
    "FeatureDetector",
    "Features",
    "TemporalMatcher",
    "TemporalMatches",
]
