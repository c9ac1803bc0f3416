"""Shared fixtures: a synthetic camera, landmarks and scripted trajectories."""

from __future__ import annotations

import numpy as np
import pytest

from camodo.camera_models import CameraIntrinsics, PinholeCamera
from camodo.geometry import SE3, Odometry
from camodo.sparse_graph import Frame, link_features

# Camera z axis along body x, camera x along -body y, camera y along -body z
R_ODO_CAM = np.array([[0.0, 0.0, 1.0], [-1.0, 0.0, 0.0], [0.0, -1.0, 0.0]])


@pytest.fixture
def camera() -> PinholeCamera:
    """Distortion-free 640x480 camera with a 300 px focal length."""
    return PinholeCamera(
        intrinsics=CameraIntrinsics(fx=300.0, fy=300.0, cx=320.0, cy=240.0),
        image_size=(640, 480),
    )


@pytest.fixture
def landmarks() -> np.ndarray:
    """Random landmarks 4-8 m in front of a camera at the world origin."""
    rng = np.random.default_rng(42)
    n = 80
    return np.column_stack(
        [
            rng.uniform(-3.0, 3.0, n),
            rng.uniform(-2.0, 2.0, n),
            rng.uniform(4.0, 8.0, n),
        ]
    )


@pytest.fixture
def sideways_poses() -> list[SE3]:
    """World-to-camera poses of a camera sliding 0.3 m along its x axis."""
    return [
        SE3(rotation=np.eye(3), translation=np.array([-0.3 * i, 0.0, 0.0]))
        for i in range(8)
    ]


def make_frames(
    camera: PinholeCamera,
    landmarks: np.ndarray,
    poses: list[SE3],
    descriptors: np.ndarray | None = None,
    link: bool = True,
    system_poses: list[Odometry] | None = None,
) -> list[Frame]:
    """Build frames observing every landmark, optionally chained by landmark index."""
    frames = []
    for i, pose in enumerate(poses):
        pixels, _ = camera.project(landmarks, pose.rotation, pose.translation)
        frame = Frame(
            timestamp_ns=i * 100_000_000,
            system_pose=system_poses[i] if system_poses is not None else None,
        )
        frame.add_keypoints(pixels, descriptors)
        frames.append(frame)

    if link:
        for prev, curr in zip(frames[:-1], frames[1:]):
            for f_prev, f_curr in zip(prev.features_2d, curr.features_2d):
                link_features(f_prev, f_curr)

    return frames


def camera_center(pose: SE3) -> np.ndarray:
    """Return the camera position in the world frame."""
    return -pose.rotation.T @ pose.translation


def random_descriptors(n: int, seed: int) -> np.ndarray:
    """Return n random 32-byte binary descriptors."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(n, 32), dtype=np.uint8)


def straight_odometry(n: int, spacing: float = 0.5, dt_ns: int = 100_000_000) -> list[Odometry]:
    """Return n odometry samples driving straight along x."""
    return [Odometry(timestamp_ns=i * dt_ns, x=spacing * i) for i in range(n)]
