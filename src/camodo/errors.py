"""Exception types for unrecoverable calibration conditions.

Insufficient data and geometrically invalid structure are never reported
through exceptions: the estimator returns False or prunes the offending
correspondence. Only conditions that would silently corrupt the
calibration are raised, and the acquisition pipeline treats them as fatal.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


class CalibrationError(Exception):
    """Base class for fatal calibration errors."""


class PoseTimeoutError(CalibrationError):
    """No interpolatable pose sample arrived before the deadline."""

    def __init__(self, source: str, timestamp_ns: int, timeout: float) -> None:
        super().__init__(
            f"No {source} data for {timeout:g}s (image timestamp {timestamp_ns})"
        )
        self.source = source
        self.timestamp_ns = timestamp_ns
        self.timeout = timeout


class InconsistentMotionError(CalibrationError):
    """Paired camera and odometry motion lists do not line up."""


def terminate_process(exc: BaseException) -> None:
    """Default fatal handler: log and exit the whole process with status 1.

    os._exit is used because fatal conditions are detected on worker
    threads, where SystemExit would only end the thread.
    """
    logger.critical("%s. Exiting...", exc)
    logging.shutdown()
    os._exit(1)
