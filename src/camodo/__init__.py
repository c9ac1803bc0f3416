"""camodo - camera/odometry extrinsic calibration in Python."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .errors import CalibrationError, InconsistentMotionError, PoseTimeoutError
from .geometry import SE3, GpsInsPose, Odometry
from .camera_models import CameraIntrinsics, DistortionCoeffs, PinholeCamera
from .sensors import SingleSlotChannel, StampedImage, SynchronizedPoseSource, TimestampedBuffer
from .sparse_graph import Frame, Point2DFeature, Point3DFeature
from .visual_odometry import (
    EstimationMode,
    PoseAnchoredMode,
    SelfPoseMode,
    SlidingWindowBA,
    SlidingWindowConfig,
    TemporalFeatureTracker,
)
from .calib import (
    AcquisitionConfig,
    AcquisitionPipeline,
    CamOdoCalibration,
    PipelineState,
    PoseSource,
)

__all__ = [
    "__version__",
    # Errors
    "CalibrationError",
    "PoseTimeoutError",
    "InconsistentMotionError",
    # Geometry
    "SE3",
    "Odometry",
    "GpsInsPose",
    # Camera
    "PinholeCamera",
    "CameraIntrinsics",
    "DistortionCoeffs",
    # Sensors
    "TimestampedBuffer",
    "SynchronizedPoseSource",
    "SingleSlotChannel",
    "StampedImage",
    # Correspondence graph
    "Frame",
    "Point2DFeature",
    "Point3DFeature",
    # Visual odometry
    "SlidingWindowBA",
    "SlidingWindowConfig",
    "EstimationMode",
    "SelfPoseMode",
    "PoseAnchoredMode",
    "TemporalFeatureTracker",
    # Calibration
    "AcquisitionPipeline",
    "AcquisitionConfig",
    "PipelineState",
    "PoseSource",
    "CamOdoCalibration",
]
