import logging

import numpy as np

from posefusion.control.absolute_source import QueuedAbsolutePositionSource
from posefusion.control.attitude_source import AttitudeSource
from posefusion.control.fusion_engine import FusionMode, MeasurementStatus, PoseFusionEngine
from posefusion.control.pose import AbsoluteMeasurement, Pose6D, identity_pose
from posefusion.control.tracker import HeadsetTracker
from posefusion.math3d.quaternion import axis_angle_to_q


class _ScriptedAttitude(AttitudeSource):
    """Reports a fixed earth acceleration; initializing for the first N samples."""

    def __init__(self, earth_acc, init_samples: int = 0):
        self.earth_acc = np.asarray(earth_acc, dtype=np.float64)
        self.init_samples = init_samples
        self.q = axis_angle_to_q(np.array([0.0, 0.0, 1.0]), 0.25)
        self.updates = []

    def update_imu(self, gyr_rad_s, acc_m_s2, dt):
        self.updates.append(("imu", dt))

    def update_marg(self, gyr_rad_s, acc_m_s2, mag, dt):
        self.updates.append(("marg", dt))

    def get_orientation(self):
        return self.q.copy()

    def get_earth_acceleration(self):
        return self.earth_acc.copy()

    def get_gravity(self):
        return np.array([0.0, 0.0, 9.81])

    def is_initializing(self):
        return len(self.updates) <= self.init_samples


def _tracker(attitude, absolute_source=None) -> HeadsetTracker:
    return HeadsetTracker(
        attitude_source=attitude,
        engine=PoseFusionEngine(),
        absolute_source=absolute_source,
        status_interval_s=0.0,
    )


def _m(x: float, conf: float, t: float) -> AbsoluteMeasurement:
    return AbsoluteMeasurement(
        position=np.array([x, 0.0, 0.0], dtype=np.float64), confidence=conf, timestamp=t
    )


def test_imu_samples_drive_dead_reckoning_and_mirror_orientation():
    attitude = _ScriptedAttitude([1.0, 0.0, 0.0])
    tracker = _tracker(attitude)
    for k in range(10):
        mode = tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.01 * (k + 1))
        assert mode is FusionMode.STALE
    pose = tracker.current_pose()
    assert pose.position[0] > 0.0
    np.testing.assert_allclose(pose.quaternion, attitude.q)
    assert tracker.imu_samples == 10


def test_initializing_attitude_suppresses_integration():
    attitude = _ScriptedAttitude([1.0, 0.0, 0.0], init_samples=3)
    tracker = _tracker(attitude)
    for k in range(3):
        tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.01 * (k + 1))
    np.testing.assert_allclose(tracker.current_pose().position, np.zeros(3))
    assert tracker.engine.stats.suppressed_ticks == 3

    tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.04)
    assert tracker.current_pose().position[0] > 0.0


def test_magnetometer_selects_marg_update():
    attitude = _ScriptedAttitude([0.0, 0.0, 0.0])
    tracker = _tracker(attitude)
    tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.01)
    tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.02, now=0.03, mag=np.ones(3))
    assert attitude.updates == [("imu", 0.01), ("marg", 0.02)]


def test_pump_applies_queued_measurements_in_order():
    queue = QueuedAbsolutePositionSource()
    attitude = _ScriptedAttitude([0.0, 0.0, 0.0])
    tracker = _tracker(attitude, absolute_source=queue)

    queue.push(_m(1.0, 0.9, 0.0))
    queue.push(_m(2.0, 0.9, 0.5))
    queue.push(_m(5.0, 0.9, 0.25))
    statuses = tracker.pump()

    assert statuses == [
        MeasurementStatus.BLENDED_HIGH,
        MeasurementStatus.BLENDED_HIGH,
        MeasurementStatus.REJECTED_OUT_OF_ORDER,
    ]
    assert len(queue) == 0
    assert tracker.measurements == 3
    assert tracker.pump() == []


def test_fresh_fix_pauses_dead_reckoning():
    attitude = _ScriptedAttitude([1.0, 0.0, 0.0])
    tracker = _tracker(attitude)
    tracker.on_absolute_measurement(_m(1.0, 0.9, 0.0))
    before = tracker.current_pose().position
    mode = tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.05)
    assert mode is FusionMode.FRESH
    np.testing.assert_allclose(tracker.current_pose().position, before)


def test_reset_forwards_to_engine():
    attitude = _ScriptedAttitude([1.0, 0.0, 0.0])
    tracker = _tracker(attitude)
    tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.1, now=0.1)
    pose = Pose6D(
        position=np.array([3.0, 2.0, 1.0], dtype=np.float64),
        quaternion=np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64),
    )
    tracker.reset(pose)
    np.testing.assert_array_equal(tracker.current_pose().position, pose.position)
    np.testing.assert_array_equal(tracker.engine.velocity, np.zeros(3))


def test_reset_reannounces_attitude_convergence(caplog):
    tracker = _tracker(_ScriptedAttitude([0.0, 0.0, 0.0]))
    with caplog.at_level(logging.INFO, logger="posefusion.control.tracker"):
        tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.01)
        tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.02)
        tracker.reset(identity_pose())
        tracker.on_imu_sample(np.zeros(3), np.zeros(3), 0.01, now=0.03)
    converged = [r for r in caplog.records if "attitude converged" in r.getMessage()]
    assert len(converged) == 2
