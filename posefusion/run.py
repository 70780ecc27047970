"""
Headset pose tracking:
- IMU (gyro + accel, optional mag) -> Madgwick AHRS -> orientation + earth-frame acceleration
- Absolute position fixes (e.g. camera solvePnP) with confidence
- Pose fusion engine: confidence-gated blend, dead-reckoning with damping when fixes go stale
- Input from a recorded JSON-lines session (--source replay) or a live UDP bridge (--source udp)
"""

from __future__ import annotations

import json
import logging
import sys
import time

import numpy as np

from .bridge.packets import CameraPacket, ImuClock, ImuPacket, Packet
from .bridge.replay import iter_replay
from .bridge.udp import UdpSensorReceiver
from .config import AppConfig, ahrs_settings_from_config, fusion_settings_from_config, parse_args
from .control.attitude_source import MadgwickAttitudeSource
from .control.fusion_engine import MeasurementStatus, PoseFusionEngine
from .control.pose import Pose6D
from .control.tracker import HeadsetTracker, pose_summary
from .math3d.quaternion import identity_q

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _log_rejected(measurement, status: MeasurementStatus) -> None:
    logger.warning("[POSE] absolute fix at t=%.3f %s", measurement.timestamp, status.value)


def build_tracker(cfg: AppConfig) -> HeadsetTracker:
    initial = Pose6D(
        position=np.array([cfg.initial_x, cfg.initial_y, cfg.initial_z], dtype=np.float64),
        quaternion=identity_q(),
    )
    engine = PoseFusionEngine(
        initial_pose=initial,
        settings=fusion_settings_from_config(cfg),
        on_rejected=_log_rejected,
    )
    attitude = MadgwickAttitudeSource(settings=ahrs_settings_from_config(cfg))
    return HeadsetTracker(
        attitude_source=attitude,
        engine=engine,
        status_interval_s=(1.0 / cfg.status_hz) if cfg.status_hz > 0.0 else 0.0,
    )


def dispatch_packet(tracker: HeadsetTracker, clock: ImuClock, packet: Packet) -> None:
    if isinstance(packet, ImuPacket):
        dt = clock.resolve(packet)
        tracker.on_imu_sample(packet.gyr, packet.acc, dt, now=packet.t, mag=packet.mag)
    elif isinstance(packet, CameraPacket):
        tracker.on_absolute_measurement(packet.to_measurement())


def run_replay(cfg: AppConfig, tracker: HeadsetTracker) -> None:
    clock = ImuClock(default_dt=cfg.default_dt)
    logger.info("[REPLAY] reading %s", cfg.replay)
    for packet in iter_replay(cfg.replay):
        dispatch_packet(tracker, clock, packet)
    logger.info(
        "[REPLAY] done: %d imu samples, %d absolute fixes, stats=%s",
        tracker.imu_samples,
        tracker.measurements,
        tracker.engine.stats,
    )


def run_udp(cfg: AppConfig, tracker: HeadsetTracker) -> None:
    clock = ImuClock(default_dt=cfg.default_dt)
    receiver = UdpSensorReceiver(cfg.bridge_host, cfg.bridge_port)
    poll_s = max(0.001, cfg.poll_ms / 1000.0)
    try:
        while True:
            for packet in receiver.recv_all():
                dispatch_packet(tracker, clock, packet)
            time.sleep(poll_s)
    except KeyboardInterrupt:
        logger.info("[BRIDGE] interrupted; stopping")
    finally:
        receiver.close()


def main(argv=None):
    cfg = parse_args(argv)
    configure_logging(cfg.log_level)
    tracker = build_tracker(cfg)

    if cfg.source == "replay":
        try:
            run_replay(cfg, tracker)
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
    else:
        run_udp(cfg, tracker)

    json.dump(pose_summary(tracker.current_pose()), sys.stdout)
    sys.stdout.write("\n")


if __name__ == "__main__":
    main()
