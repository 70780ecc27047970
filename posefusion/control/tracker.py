"""Control plane for feeding IMU samples and absolute fixes into the engine."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .absolute_source import AbsolutePositionSource
from .attitude_source import AttitudeSource
from .fusion_engine import FusionMode, MeasurementStatus, PoseFusionEngine
from .pose import AbsoluteMeasurement, Pose6D

logger = logging.getLogger(__name__)


class HeadsetTracker:
    """Serializes both sensor streams into one ``PoseFusionEngine``.

    All calls are expected from a single thread (the host's update loop);
    the tracker is the single writer of the engine.
    """

    def __init__(
        self,
        attitude_source: AttitudeSource,
        engine: PoseFusionEngine,
        absolute_source: Optional[AbsolutePositionSource] = None,
        status_interval_s: float = 0.2,
    ):
        self.attitude_source = attitude_source
        self.engine = engine
        self.absolute_source = absolute_source
        self.status_interval = max(0.0, float(status_interval_s))

        self.last_mode: Optional[FusionMode] = None
        self.imu_samples = 0
        self.measurements = 0
        self._was_initializing = True
        self._last_status_t: Optional[float] = None

    def on_imu_sample(self, gyr, acc, dt: float, now: float, mag=None) -> FusionMode:
        if mag is None:
            self.attitude_source.update_imu(gyr, acc, dt)
        else:
            self.attitude_source.update_marg(gyr, acc, mag, dt)

        sample = self.attitude_source.sample()
        if self._was_initializing and not sample.initializing:
            logger.info("[POSE] attitude converged; inertial dead-reckoning enabled")
        self._was_initializing = sample.initializing

        mode = self.engine.on_inertial_tick(
            sample.earth_acceleration,
            dt,
            now=now,
            orientation=sample.orientation,
            initializing=sample.initializing,
        )
        self.last_mode = mode
        self.imu_samples += 1
        self._maybe_log_status(now)
        return mode

    def on_absolute_measurement(self, measurement: AbsoluteMeasurement) -> MeasurementStatus:
        status = self.engine.apply_measurement(measurement)
        self.measurements += 1
        return status

    def pump(self) -> list[MeasurementStatus]:
        """Drain the absolute source into the engine in arrival order."""
        if self.absolute_source is None:
            return []
        return [self.on_absolute_measurement(m) for m in self.absolute_source.poll()]

    def current_pose(self) -> Pose6D:
        return self.engine.current_pose()

    def reset(self, pose: Pose6D) -> None:
        self.engine.reset(pose.position, pose.quaternion)
        self._last_status_t = None
        self._was_initializing = True

    def _maybe_log_status(self, now: float) -> None:
        if self.status_interval <= 0.0:
            return
        if self._last_status_t is not None and (now - self._last_status_t) < self.status_interval:
            return
        self._last_status_t = now
        pose = self.engine.current_pose()
        p = pose.position
        v = self.engine.velocity
        q = pose.quaternion
        logger.info(
            "[POSE] t=%.3f xyz=(%.3f, %.3f, %.3f) vel=(%.3f, %.3f, %.3f) "
            "q=[%.4f, %.4f, %.4f, %.4f] mode=%s",
            now,
            p[0],
            p[1],
            p[2],
            v[0],
            v[1],
            v[2],
            q[0],
            q[1],
            q[2],
            q[3],
            self.last_mode.value if self.last_mode is not None else "-",
        )


def pose_summary(pose: Pose6D) -> dict:
    """JSON-friendly view of a pose."""
    return {
        "position_m": [float(x) for x in np.asarray(pose.position).reshape(3)],
        "quaternion_wxyz": [float(x) for x in np.asarray(pose.quaternion).reshape(4)],
    }
