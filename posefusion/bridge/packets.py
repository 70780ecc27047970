"""JSON packet schema shared by the UDP bridge and session replay.

IMU packet:
  {"type": "imu", "t": 12.34, "dt": 0.01,
   "gyr_rad_s": [x, y, z], "acc_m_s2": [x, y, z], "mag_ut": [x, y, z]}

Camera packet:
  {"type": "camera", "t": 12.34, "position_m": [x, y, z], "confidence": 0.8}

``dt`` and ``mag_ut`` are optional. Malformed packets parse to ``None``.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from ..control.pose import AbsoluteMeasurement


@dataclass(slots=True)
class ImuPacket:
    t: float
    gyr: np.ndarray
    acc: np.ndarray
    dt: Optional[float] = None
    mag: Optional[np.ndarray] = None


@dataclass(slots=True)
class CameraPacket:
    t: float
    position: np.ndarray
    confidence: float

    def to_measurement(self) -> AbsoluteMeasurement:
        return AbsoluteMeasurement(
            position=self.position.copy(),
            confidence=self.confidence,
            timestamp=self.t,
        )


Packet = Union[ImuPacket, CameraPacket]


def _vec3(value) -> Optional[np.ndarray]:
    if value is None:
        return None
    try:
        v = np.asarray(value, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None
    if v.size != 3 or not np.isfinite(v).all():
        return None
    return v


def _finite(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _parse_imu_payload(payload: dict, t: float) -> Optional[ImuPacket]:
    gyr = _vec3(payload.get("gyr_rad_s", payload.get("gyr")))
    acc = _vec3(payload.get("acc_m_s2", payload.get("acc")))
    if gyr is None or acc is None:
        return None

    dt = None
    if payload.get("dt") is not None:
        dt = _finite(payload["dt"])
        if dt is None:
            return None

    mag = None
    raw_mag = payload.get("mag_ut", payload.get("mag"))
    if raw_mag is not None:
        mag = _vec3(raw_mag)
        if mag is None:
            return None
    return ImuPacket(t=t, gyr=gyr, acc=acc, dt=dt, mag=mag)


def _parse_camera_payload(payload: dict, t: float) -> Optional[CameraPacket]:
    position = _vec3(payload.get("position_m", payload.get("position")))
    confidence = _finite(payload.get("confidence", 1.0))
    if position is None or confidence is None:
        return None
    return CameraPacket(t=t, position=position, confidence=confidence)


def parse_payload(payload: dict) -> Optional[Packet]:
    if not isinstance(payload, dict):
        return None
    t = _finite(payload.get("t"))
    if t is None:
        return None
    kind = payload.get("type")
    if kind == "imu":
        return _parse_imu_payload(payload, t)
    if kind == "camera":
        return _parse_camera_payload(payload, t)
    return None


def parse_packet(data: bytes) -> Optional[Packet]:
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return parse_payload(payload)


class ImuClock:
    """Resolves per-sample dt from explicit ``dt`` or consecutive timestamps."""

    def __init__(self, default_dt: float = 0.01):
        self.default_dt = float(default_dt)
        self._last_t: Optional[float] = None

    def resolve(self, packet: ImuPacket) -> float:
        if packet.dt is not None:
            dt = packet.dt
        elif self._last_t is None:
            dt = self.default_dt
        else:
            # Negative gaps pass through; the engine rejects them.
            dt = packet.t - self._last_t
        self._last_t = packet.t
        return dt
