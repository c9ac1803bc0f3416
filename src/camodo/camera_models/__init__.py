"""Camera projection models."""

from .pinhole import CameraIntrinsics, DistortionCoeffs, PinholeCamera

__all__ = [
    "PinholeCamera",
    "CameraIntrinsics",
    "DistortionCoeffs",
]
