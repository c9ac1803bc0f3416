#!/usr/bin/env python3
"""Demo: camera-odometry calibration on a simulated drive.

A vehicle drives a winding route through a field of landmarks. The camera
sees each landmark with a unique descriptor and a little pixel noise; the
feature tracker and sliding-window estimator build visual odometry
segments, which are paired with the odometry motions and passed to the
hand-eye solver. Finally the estimate is refined with pose-anchored
bundle adjustment.

Usage:
    uv run python examples/synthetic_calibration_demo.py
"""

import logging

import numpy as np
from scipy.spatial.transform import Rotation

from camodo import (
    SE3,
    CameraIntrinsics,
    CamOdoCalibration,
    Frame,
    Odometry,
    PinholeCamera,
    PoseAnchoredMode,
    SlidingWindowBA,
    TemporalFeatureTracker,
)
from camodo.calib import build_motion_pairs
from camodo.geometry import rotation_angle
from camodo.sparse_graph import link_features
from camodo.visual_odometry import TemporalMatcher


def simulate_route(n_frames: int) -> list[Odometry]:
    """Return odometry poses of a winding drive, one per keyframe."""
    poses = []
    x, y, yaw = 0.0, 0.0, 0.0
    for i in range(n_frames):
        poses.append(Odometry(timestamp_ns=i * 100_000_000, x=x, y=y, yaw=yaw))
        yaw += 0.06 * np.sin(0.05 * i)
        x += 0.5 * np.cos(yaw)
        y += 0.5 * np.sin(yaw)
    return poses


def observe(
    camera: PinholeCamera,
    landmarks: np.ndarray,
    descriptors: np.ndarray,
    world_to_camera: SE3,
    rng: np.random.Generator,
) -> tuple[np.ndarray, np.ndarray]:
    """Return noisy pixels and descriptors of the landmarks in view."""
    pixels, depths = camera.project(
        landmarks, world_to_camera.rotation, world_to_camera.translation
    )
    width, height = camera.image_size
    visible = (
        (depths > 1.0)
        & (depths < 40.0)
        & (pixels[:, 0] >= 0)
        & (pixels[:, 0] < width)
        & (pixels[:, 1] >= 0)
        & (pixels[:, 1] < height)
    )
    noisy = pixels[visible] + rng.normal(0.0, 0.3, (int(np.sum(visible)), 2))
    return noisy, descriptors[visible]


def main() -> None:
    """Run the synthetic calibration demo."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # Configuration
    n_frames = 120
    n_landmarks = 4000
    min_track_length = 15
    seed = 0

    rng = np.random.default_rng(seed)
    camera = PinholeCamera(
        intrinsics=CameraIntrinsics(fx=300.0, fy=300.0, cx=320.0, cy=240.0),
        image_size=(640, 480),
    )

    # Forward-looking camera, slightly rotated, mounted above the rear axle
    forward = np.array([[0.0, 0.0, 1.0], [-1.0, 0.0, 0.0], [0.0, -1.0, 0.0]])
    true_extrinsic = SE3(
        rotation=Rotation.from_euler("ZYX", [0.05, -0.03, 0.02]).as_matrix() @ forward,
        translation=np.array([1.5, 0.2, 1.3]),
    )

    route = simulate_route(n_frames)
    span = np.array([o.position[:2] for o in route])
    landmarks = np.column_stack(
        [
            rng.uniform(span[:, 0].min() - 20.0, span[:, 0].max() + 30.0, n_landmarks),
            rng.uniform(span[:, 1].min() - 20.0, span[:, 1].max() + 20.0, n_landmarks),
            rng.uniform(-1.0, 4.0, n_landmarks),
        ]
    )
    descriptors = rng.integers(0, 256, size=(n_landmarks, 32), dtype=np.uint8)

    print(f"Simulating {n_frames} keyframes over {n_landmarks} landmarks...")

    # Visual odometry segments
    tracker = TemporalFeatureTracker(camera)
    calibration = CamOdoCalibration(motion_count=n_frames - 1)
    pending: list[Odometry] = []
    all_frames: list[Frame] = []

    def submit_segment() -> None:
        if len(pending) >= min_track_length:
            calibration.add_motion_segment(*build_motion_pairs(tracker.get_poses(), pending))

    for odo in route:
        world_to_camera = true_extrinsic.inverse() @ odo.to_se3().inverse()
        pixels, desc = observe(camera, landmarks, descriptors, world_to_camera, rng)

        frame = Frame(system_pose=odo, odometry_measurement=odo, timestamp_ns=odo.timestamp_ns)
        frame.add_keypoints(pixels, desc)
        all_frames.append(frame)

        ok, _, _ = tracker.add_frame(frame)
        if ok:
            pending.append(odo)
        else:
            submit_segment()
            pending = [odo]
    submit_segment()

    print(
        f"Collected {calibration.current_motion_count} motions in "
        f"{len(calibration.segments)} segments"
    )

    # Hand-eye solve
    T_odo_cam = calibration.solve()
    estimate = SE3.from_matrix(T_odo_cam)
    print_comparison("Hand-eye", estimate, true_extrinsic)
    print(f"  Segment scales: {np.array2string(calibration.scales, precision=3)}")

    # Pose-anchored refinement over the most recent frames
    refine_frames = [_copy_observations(frame) for frame in all_frames[-10:]]
    matcher = TemporalMatcher()
    for prev, curr in zip(refine_frames[:-1], refine_frames[1:]):
        matches = matcher.match(_descriptors(prev), _descriptors(curr))
        for i, j in zip(matches.prev_indices, matches.curr_indices):
            link_features(prev.features_2d[i], curr.features_2d[j])

    window = SlidingWindowBA(camera, PoseAnchoredMode(estimate))
    for frame in refine_frames:
        window.add_frame(frame)
    print_comparison("Refined", window.camera_extrinsic, true_extrinsic)

    min_err, max_err, avg_err = window.window_reprojection_error()
    print(f"  Reprojection error: min {min_err:.3f} | max {max_err:.3f} | avg {avg_err:.3f} px")


def _descriptors(frame: Frame) -> np.ndarray:
    return np.array([f.descriptor for f in frame.features_2d], dtype=np.uint8).reshape(-1, 32)


def _copy_observations(frame: Frame) -> Frame:
    """Return a fresh frame with the same keypoints, unlinked."""
    copy = Frame(
        system_pose=frame.system_pose,
        odometry_measurement=frame.odometry_measurement,
        timestamp_ns=frame.timestamp_ns,
    )
    copy.add_keypoints(
        np.array([f.keypoint for f in frame.features_2d]).reshape(-1, 2),
        np.array([f.descriptor for f in frame.features_2d]).reshape(-1, 32),
    )
    return copy


def print_comparison(label: str, estimate: SE3, truth: SE3) -> None:
    """Print rotation and translation error of an extrinsic estimate."""
    dR = estimate.rotation @ truth.rotation.T
    dt = np.linalg.norm(estimate.translation - truth.translation)
    print(f"{label}:")
    print(f"  Rotation error:    {np.rad2deg(rotation_angle(dR)):.3f} deg")
    print(f"  Translation error: {dt:.3f} m")
    print(f"  Translation:       {np.array2string(estimate.translation, precision=3)}")


if __name__ == "__main__":
    main()
