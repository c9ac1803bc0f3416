"""Camera-odometry calibration: acquisition pipelines and hand-eye solver."""

from .acquisition import (
    AcquisitionConfig,
    AcquisitionPipeline,
    PipelineState,
    PoseSource,
    build_motion_pairs,
)
from .cam_odo_calibration import CamOdoCalibration, MotionSegment, MotionSegmentAccumulator

__all__ = [
    "AcquisitionPipeline",
    "AcquisitionConfig",
    "PipelineState",
    "PoseSource",
    "build_motion_pairs",
    "CamOdoCalibration",
    "MotionSegment",
    "MotionSegmentAccumulator",
]
