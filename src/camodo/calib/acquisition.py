"""Per-camera acquisition pipeline feeding the camera-odometry calibration.

One pipeline runs per camera on its own thread. It pairs every incoming
image with a pose interpolated at the image timestamp, keeps only images
taken after the vehicle moved far enough (keyframes), extends the visual
track, and whenever the track breaks (or the pipeline is stopped) turns
the finished segment into paired relative motions for the hand-eye
solver.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

import numpy as np

from ..camera_models import PinholeCamera
from ..errors import CalibrationError, InconsistentMotionError, terminate_process
from ..geometry import GpsInsPose, Odometry
from ..sensors import SingleSlotChannel, SynchronizedPoseSource
from ..sparse_graph import Frame
from ..visual_odometry import FeatureTracker, TemporalFeatureTracker
from .cam_odo_calibration import CamOdoCalibration, MotionSegmentAccumulator

logger = logging.getLogger(__name__)

FatalHandler = Callable[[BaseException], None]


class PoseSource(Enum):
    """Proprioceptive stream the calibration is expressed against."""

    ODOMETRY = "odometry"
    GPS_INS = "gps_ins"


class PipelineState(Enum):
    """Lifecycle of an acquisition pipeline."""

    IDLE = "idle"
    RUNNING = "running"
    WAIT_FOR_IMAGE = "wait_for_image"
    PROCESS_FRAME = "process_frame"
    STOPPING = "stopping"
    FINALIZING = "finalizing"
    TERMINATED = "terminated"


@dataclass
class AcquisitionConfig:
    """Configuration for the acquisition pipeline."""

    keyframe_distance: float = 0.25  # Min travel between keyframes (odometry units)
    min_track_length: int = 15  # Min poses in a segment before it is submitted
    pose_timeout: float = 4.0  # Max wait for an interpolatable pose (seconds)
    image_poll_interval: float = 0.01  # Image wait granularity (seconds)


def build_motion_pairs(
    cam_poses: Sequence[np.ndarray],
    odo_poses: Sequence[Odometry | np.ndarray],
) -> tuple[list[np.ndarray], list[np.ndarray]]:
    """Turn consecutive poses of a segment into paired relative motions.

    For each i >= 1 the camera motion is C[i] @ inv(C[i-1]) (world-to-camera
    poses) and the odometry motion is inv(P[i]) @ P[i-1] (body-to-world
    poses).

    Args:
        cam_poses: 4x4 world-to-camera poses
        odo_poses: Odometry samples or 4x4 body-to-world poses

    Returns:
        Tuple of (camera motions, odometry motions), one pair per step

    Raises:
        InconsistentMotionError: If the two pose lists differ in length
    """
    if len(cam_poses) != len(odo_poses):
        raise InconsistentMotionError(
            f"Numbers of odometry ({len(odo_poses)}) and camera poses "
            f"({len(cam_poses)}) differ"
        )

    P = [p.to_matrix() if isinstance(p, Odometry) else np.asarray(p) for p in odo_poses]
    C = [np.asarray(c) for c in cam_poses]

    cam_motions = []
    odo_motions = []
    for i in range(1, len(P)):
        odo_motions.append(np.linalg.inv(P[i]) @ P[i - 1])
        cam_motions.append(C[i] @ np.linalg.inv(C[i - 1]))

    return cam_motions, odo_motions


class AcquisitionPipeline:
    """Synchronizes one camera with the pose streams and collects motions.

    State machine per tick: RUNNING -> WAIT_FOR_IMAGE -> PROCESS_FRAME ->
    RUNNING, or WAIT_FOR_IMAGE -> STOPPING once the stop event is set,
    followed by FINALIZING (hand-eye solve) and TERMINATED.

    Fatal conditions (no pose within the timeout, inconsistent motion
    lists) and any unexpected error on the worker thread are passed to
    fatal_handler, which by default terminates the process.
    """

    def __init__(
        self,
        camera_id: int,
        camera: PinholeCamera,
        channel: SingleSlotChannel,
        odometry: SynchronizedPoseSource[Odometry],
        gps_ins: SynchronizedPoseSource[GpsInsPose] | None = None,
        pose_source: PoseSource = PoseSource.ODOMETRY,
        tracker: FeatureTracker | None = None,
        calibration: MotionSegmentAccumulator | None = None,
        motion_count: int = 200,
        config: AcquisitionConfig | None = None,
        stop_event: threading.Event | None = None,
        fatal_handler: FatalHandler = terminate_process,
    ) -> None:
        """Initialize pipeline.

        Args:
            camera_id: Index of the camera
            camera: Camera model (its mask is passed to the tracker)
            channel: Image handoff from the camera producer
            odometry: Shared odometry stream
            gps_ins: Shared GPS/INS stream, if any
            pose_source: Stream the system pose is taken from
            tracker: Feature tracker (defaults to an ORB temporal tracker)
            calibration: Motion accumulator (defaults to CamOdoCalibration)
            motion_count: Motions wanted before the pipeline reports completion;
                ignored when a calibration is supplied
            config: Acquisition configuration
            stop_event: Shared stop flag (a private one is created if omitted)
            fatal_handler: Called with the exception on fatal conditions
        """
        if pose_source == PoseSource.GPS_INS and gps_ins is None:
            raise ValueError("GPS/INS pose source selected without a GPS/INS stream")

        self._camera_id = camera_id
        self._camera = camera
        self._channel = channel
        self._odometry = odometry
        self._gps_ins = gps_ins
        self._pose_source = pose_source
        self._tracker = tracker if tracker is not None else TemporalFeatureTracker(camera)
        self._calibration = (
            calibration if calibration is not None else CamOdoCalibration(motion_count)
        )
        self._config = config or AcquisitionConfig()
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._fatal_handler = fatal_handler

        self._state = PipelineState.IDLE
        self._thread: threading.Thread | None = None
        self._running = False

        self._prev_frame: Frame | None = None
        self._pending_poses: list[Odometry] = []
        self._track_breaks = 0
        self._frame_segments: list[list[Frame]] = []
        self._cam_odo_transform = np.eye(4)

        self._status_lock = threading.Lock()
        self._status = ""
        self._completed = threading.Event()
        self._finished = threading.Event()
        self._finished_callbacks: list[Callable[[], None]] = []

    def launch(self) -> None:
        """Start the worker thread."""
        if self._thread is not None:
            raise RuntimeError(f"Pipeline for camera {self._camera_id} already launched")

        self._running = True
        self._thread = threading.Thread(
            target=self._run, name=f"camodo-camera-{self._camera_id}", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the worker thread to exit."""
        if self._thread is not None:
            self._thread.join(timeout)

    def stop(self) -> None:
        """Request shutdown; the current segment is drained and solved."""
        self._stop_event.set()

    @property
    def running(self) -> bool:
        """Return True while the worker thread is active."""
        return self._running

    def _run(self) -> None:
        try:
            while self.tick():
                pass
            self._finalize()
        except CalibrationError as exc:
            self._state = PipelineState.TERMINATED
            self._fatal_handler(exc)
        except Exception as exc:
            logger.exception("Camera %d: acquisition failed", self._camera_id)
            self._state = PipelineState.TERMINATED
            self._fatal_handler(exc)
        finally:
            self._running = False

    def tick(self) -> bool:
        """Run one iteration of the acquisition loop.

        Returns:
            False once the stop event was observed and the final segment
            drained; True otherwise

        Raises:
            PoseTimeoutError: If no pose could be interpolated in time
            InconsistentMotionError: If a segment could not be submitted
        """
        self._state = PipelineState.WAIT_FOR_IMAGE
        while (
            not self._channel.wait_for_data(self._config.image_poll_interval)
            and not self._stop_event.is_set()
        ):
            pass

        if self._stop_event.is_set():
            self._state = PipelineState.STOPPING
            self._end_segment(seed=None)
            self._update_status()
            return False

        self._state = PipelineState.PROCESS_FRAME
        try:
            self._process_image()
        finally:
            self._channel.notify_processing_done()
        self._update_status()

        self._state = PipelineState.RUNNING
        return True

    def _process_image(self) -> None:
        stamped = self._channel.take()
        if stamped is None:
            return

        timestamp_ns = stamped.timestamp_ns
        if self._prev_frame is not None and timestamp_ns == self._prev_frame.timestamp_ns:
            return

        if self._pose_source == PoseSource.ODOMETRY and self._odometry.empty():
            logger.warning("No data in odometry buffer")
            return
        if self._pose_source == PoseSource.GPS_INS and self._gps_ins.empty():
            logger.warning("No data in GPS/INS buffer")
            return

        timeout = self._config.pose_timeout

        # In GPS/INS mode the odometry stream is never waited on
        odometry = None
        if self._pose_source == PoseSource.ODOMETRY:
            odometry = self._odometry.lookup(timestamp_ns, timeout)

        gps_ins = None
        if self._gps_ins is not None and (
            self._pose_source == PoseSource.GPS_INS or not self._gps_ins.empty()
        ):
            gps_ins = self._gps_ins.lookup(timestamp_ns, timeout)

        if self._pose_source == PoseSource.GPS_INS:
            system_pose = gps_ins.to_odometry()
            odometry = system_pose
        else:
            system_pose = odometry

        # Keyframe gating on distance travelled since the previous frame
        if (
            self._prev_frame is not None
            and np.linalg.norm(system_pose.position - self._prev_frame.system_pose.position)
            < self._config.keyframe_distance
        ):
            return

        frame = Frame(
            camera_id=self._camera_id,
            image=stamped.image,
            system_pose=system_pose,
            odometry_measurement=odometry,
            gps_ins_measurement=gps_ins,
            timestamp_ns=timestamp_ns,
        )

        ok, _, _ = self._tracker.add_frame(frame, self._camera.mask)
        self._prev_frame = frame

        if ok:
            self._pending_poses.append(system_pose)
        else:
            logger.debug("Camera %d: track break at %d", self._camera_id, timestamp_ns)
            self._end_segment(seed=system_pose)

    def _end_segment(self, seed: Odometry | None) -> None:
        """Submit the finished segment and start the next one.

        Args:
            seed: System pose of the frame that broke the track (it starts
                the next segment), or None on shutdown, in which case the
                most recent pose is kept
        """
        if len(self._pending_poses) >= self._config.min_track_length:
            self._add_calibration_data(
                self._tracker.get_poses(), self._pending_poses, self._tracker.get_frames()
            )
        elif len(self._pending_poses) > 1:
            logger.warning(
                "Camera %d: discarding segment of %d poses (need %d)",
                self._camera_id,
                len(self._pending_poses),
                self._config.min_track_length,
            )

        if seed is not None:
            self._pending_poses = [seed]
        else:
            self._pending_poses = self._pending_poses[-1:]
        self._track_breaks += 1

    def _add_calibration_data(
        self,
        cam_poses: list[np.ndarray],
        odo_poses: list[Odometry],
        frames: list[Frame],
    ) -> None:
        cam_motions, odo_motions = build_motion_pairs(cam_poses, odo_poses)

        if not self._calibration.add_motion_segment(cam_motions, odo_motions):
            raise InconsistentMotionError("Numbers of odometry and camera motions do not match")

        self._frame_segments.append(list(frames))
        logger.info(
            "Camera %d: submitted segment of %d motions", self._camera_id, len(cam_motions)
        )

    def _update_status(self) -> None:
        current_motion_count = 0
        if len(self._pending_poses) >= self._config.min_track_length:
            current_motion_count = len(self._pending_poses) - 1

        n_motions = self._calibration.current_motion_count + current_motion_count
        status = f"# motions: {n_motions} | # track breaks: {self._track_breaks}"

        with self._status_lock:
            changed = status != self._status
            self._status = status
        if changed:
            logger.debug("Camera %d: %s", self._camera_id, status)

        if n_motions >= self._calibration.motion_count and not self._completed.is_set():
            logger.info("Camera %d: collected %d motions", self._camera_id, n_motions)
            self._completed.set()

    def _finalize(self) -> None:
        self._state = PipelineState.FINALIZING
        logger.info("Calibrating odometry - camera %d...", self._camera_id)

        self._cam_odo_transform = np.asarray(self._calibration.solve(), dtype=np.float64)

        logger.info("Finished calibrating odometry - camera %d", self._camera_id)
        logger.info("Rotation:\n%s", self._cam_odo_transform[:3, :3])
        logger.info("Translation: %s", self._cam_odo_transform[:3, 3])

        self._state = PipelineState.TERMINATED
        self._fire_finished()

    def _fire_finished(self) -> None:
        if self._finished.is_set():
            return
        self._finished.set()
        for callback in self._finished_callbacks:
            callback()

    def add_finished_callback(self, callback: Callable[[], None]) -> None:
        """Register a callable invoked once when calibration has finished."""
        self._finished_callbacks.append(callback)

    def reprojection_error(self) -> tuple[float, float, float]:
        """Return (min, max, mean) reprojection error over all retained segments.

        Returns:
            Errors in pixels, all zero if no 3D-backed features exist
        """
        errors = []
        for segment in self._frame_segments:
            for frame in segment:
                features = frame.features_with_3d()
                if not features:
                    continue
                points_3d = np.array([f.feature_3d.point for f in features])
                pixels = np.array([f.keypoint for f in features])
                with np.errstate(divide="ignore", invalid="ignore"):
                    projected, _ = self._camera.project(
                        points_3d, frame.camera_pose.rotation, frame.camera_pose.translation
                    )
                errors.append(np.linalg.norm(projected - pixels, axis=1))

        if not errors:
            return 0.0, 0.0, 0.0

        errors = np.concatenate(errors)
        return float(np.min(errors)), float(np.max(errors)), float(np.mean(errors))

    @property
    def camera_id(self) -> int:
        """Return the camera index."""
        return self._camera_id

    @property
    def cam_odo_transform(self) -> np.ndarray:
        """Return the 4x4 camera pose in the odometry frame (valid once finished)."""
        return self._cam_odo_transform.copy()

    @property
    def frame_segments(self) -> list[list[Frame]]:
        """Return the frames of every submitted segment."""
        return [list(segment) for segment in self._frame_segments]

    @property
    def status(self) -> str:
        """Return the progress line "# motions: M | # track breaks: K"."""
        with self._status_lock:
            return self._status

    @property
    def completed(self) -> threading.Event:
        """Return the event set once enough motions were collected."""
        return self._completed

    @property
    def finished(self) -> threading.Event:
        """Return the event set once calibration has finished."""
        return self._finished

    @property
    def state(self) -> PipelineState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def track_breaks(self) -> int:
        """Return number of track breaks so far."""
        return self._track_breaks

    @property
    def calibration(self) -> MotionSegmentAccumulator:
        """Return the motion accumulator."""
        return self._calibration
