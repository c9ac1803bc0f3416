"""Correspondence graph: frames, 2D features and 3D scene points."""

from .correspondences import (
    detach_point,
    find_feature_correspondences,
    link_features,
    sever_match,
)
from .features import Point2DFeature, Point3DFeature
from .frame import Frame

__all__ = [
    "Frame",
    "Point2DFeature",
    "Point3DFeature",
    "link_features",
    "sever_match",
    "find_feature_correspondences",
    "detach_point",
]
