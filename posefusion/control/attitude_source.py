"""Attitude source interfaces and the Madgwick AHRS adapter.

The fusion engine only consumes an attitude estimator's outputs
(orientation, gravity-free earth acceleration, gravity, initialising flag).
``MadgwickAttitudeSource`` adapts the ``ahrs`` package's Madgwick filter to
that contract and adds the bookkeeping the engine relies on: a gain ramp
while the filter converges and rejection of disturbed accelerometer or
magnetometer samples. A gyroscope reading outside its range restarts
initialisation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Optional

import numpy as np
from ahrs.filters import Madgwick

from ..math3d.quaternion import (
    angle_between_deg,
    identity_q,
    q_conj,
    q_normalize,
    q_rotate_vec,
)
from ..math3d.vector import as_vec3, is_finite_vec, zeros3
from .pose import AttitudeSample

logger = logging.getLogger(__name__)

# Filter gain at the start of initialisation; ramps down to the configured gain.
INITIAL_GAIN = 10.0


class AttitudeSource:
    """Base interface for attitude estimators feeding the fusion engine."""

    def get_orientation(self) -> np.ndarray:
        raise NotImplementedError

    def get_earth_acceleration(self) -> np.ndarray:
        raise NotImplementedError

    def get_gravity(self) -> np.ndarray:
        raise NotImplementedError

    def is_initializing(self) -> bool:
        raise NotImplementedError

    def get_linear_acceleration(self) -> np.ndarray:
        return zeros3()

    def is_acceleration_rejected(self) -> bool:
        return False

    def is_magnetic_rejected(self) -> bool:
        return False

    def is_gyroscope_clipped(self) -> bool:
        return False

    def update_imu(self, gyr_rad_s, acc_m_s2, dt: float) -> None:
        raise NotImplementedError

    def update_marg(self, gyr_rad_s, acc_m_s2, mag, dt: float) -> None:
        # Sources without a magnetometer path fall back to 6-DOF.
        self.update_imu(gyr_rad_s, acc_m_s2, dt)

    def reset(self) -> None:
        pass

    def sample(self) -> AttitudeSample:
        return AttitudeSample(
            orientation=self.get_orientation(),
            earth_acceleration=self.get_earth_acceleration(),
            linear_acceleration=self.get_linear_acceleration(),
            gravity=self.get_gravity(),
            initializing=self.is_initializing(),
            acceleration_rejected=self.is_acceleration_rejected(),
            magnetic_rejected=self.is_magnetic_rejected(),
            gyroscope_clipped=self.is_gyroscope_clipped(),
        )


@dataclass(frozen=True)
class AhrsSettings:
    gain: float = 0.5
    gyroscope_range_dps: float = 2000.0
    acceleration_rejection_deg: float = 10.0
    magnetic_rejection_deg: float = 10.0
    # Consecutive rejected samples before rejection is lifted (5 s @ 50 Hz).
    recovery_trigger_period: int = 250
    initialisation_period_s: float = 3.0
    gravity_m_s2: float = 9.81

    @classmethod
    def default(cls) -> "AhrsSettings":
        return cls()

    @classmethod
    def fast_motion(cls) -> "AhrsSettings":
        """Trust the gyroscope more and tolerate larger accelerations."""
        return cls(
            gain=0.3,
            acceleration_rejection_deg=15.0,
            magnetic_rejection_deg=15.0,
            recovery_trigger_period=150,
        )

    def validate(self) -> None:
        if not (self.gain > 0.0):
            raise ValueError(f"ahrs gain must be > 0, got {self.gain}")
        if self.gyroscope_range_dps <= 0.0:
            raise ValueError(
                f"gyroscope_range_dps must be > 0, got {self.gyroscope_range_dps}"
            )
        if self.acceleration_rejection_deg < 0.0 or self.magnetic_rejection_deg < 0.0:
            raise ValueError("rejection thresholds must be >= 0")
        if self.recovery_trigger_period < 0:
            raise ValueError(
                f"recovery_trigger_period must be >= 0, got {self.recovery_trigger_period}"
            )
        if self.initialisation_period_s < 0.0:
            raise ValueError(
                f"initialisation_period_s must be >= 0, got {self.initialisation_period_s}"
            )
        if self.gravity_m_s2 <= 0.0:
            raise ValueError(f"gravity_m_s2 must be > 0, got {self.gravity_m_s2}")


_PRESETS: dict[str, Callable[[], AhrsSettings]] = {
    "default": AhrsSettings.default,
    "fast-motion": AhrsSettings.fast_motion,
}


def preset_settings(name: str, gain: Optional[float] = None) -> AhrsSettings:
    try:
        settings = _PRESETS[name]()
    except KeyError:
        raise ValueError(
            f"unknown AHRS preset {name!r}, expected one of {'|'.join(_PRESETS)}"
        ) from None
    if gain is not None:
        settings = replace(settings, gain=float(gain))
    return settings


class MadgwickAttitudeSource(AttitudeSource):
    """AttitudeSource backed by ``ahrs.filters.Madgwick``.

    Units: gyroscope rad/s, accelerometer m/s^2 (specific force, +g up at
    rest), magnetometer any unit. Quaternions are [w, x, y, z], sensor
    relative to earth, so ``q_rotate_vec(q, v_sensor)`` gives earth frame.
    """

    def __init__(
        self,
        settings: Optional[AhrsSettings] = None,
        on_initialization_complete: Optional[Callable[[], None]] = None,
    ):
        self.settings = settings or AhrsSettings.default()
        self.settings.validate()
        self.on_initialization_complete = on_initialization_complete
        self._filter = Madgwick(gain=INITIAL_GAIN)
        self._gyro_limit = math.radians(self.settings.gyroscope_range_dps)
        self._reset_state()
        logger.info(
            "[AHRS] madgwick ready (gain=%.3f, accel_rejection=%.1fdeg, init=%.1fs)",
            self.settings.gain,
            self.settings.acceleration_rejection_deg,
            self.settings.initialisation_period_s,
        )

    def _reset_state(self) -> None:
        self._q = identity_q()
        self._earth_acc = zeros3()
        self._linear_acc = zeros3()
        self._gravity = np.array([0.0, 0.0, self.settings.gravity_m_s2], dtype=np.float64)
        self._init_elapsed = 0.0
        self._initializing = True
        self._accel_rejected = False
        self._accel_rejection_count = 0
        self._mag_rejected = False
        self._mag_rejection_count = 0
        self._gyro_clipped = False

    def apply_settings(self, settings: AhrsSettings) -> None:
        settings.validate()
        self.settings = settings
        self._gyro_limit = math.radians(settings.gyroscope_range_dps)
        logger.info("[AHRS] settings reapplied (gain=%.3f)", settings.gain)

    def reset(self) -> None:
        self._reset_state()
        logger.info("[AHRS] reset; re-initialising")

    # -- AttitudeSource ----------------------------------------------------

    def get_orientation(self) -> np.ndarray:
        return self._q.copy()

    def get_earth_acceleration(self) -> np.ndarray:
        return self._earth_acc.copy()

    def get_linear_acceleration(self) -> np.ndarray:
        return self._linear_acc.copy()

    def get_gravity(self) -> np.ndarray:
        return self._gravity.copy()

    def is_initializing(self) -> bool:
        return self._initializing

    def is_acceleration_rejected(self) -> bool:
        return self._accel_rejected

    def is_magnetic_rejected(self) -> bool:
        return self._mag_rejected

    def is_gyroscope_clipped(self) -> bool:
        return self._gyro_clipped

    def update_imu(self, gyr_rad_s, acc_m_s2, dt: float) -> None:
        self._update(gyr_rad_s, acc_m_s2, None, dt)

    def update_marg(self, gyr_rad_s, acc_m_s2, mag, dt: float) -> None:
        m = as_vec3(mag) if mag is not None else None
        if m is not None and not np.any(m):
            m = None
        self._update(gyr_rad_s, acc_m_s2, m, dt)

    # -- internals ---------------------------------------------------------

    def _current_gain(self) -> float:
        period = self.settings.initialisation_period_s
        if not self._initializing or period <= 0.0:
            return self.settings.gain
        frac = min(1.0, self._init_elapsed / period)
        return INITIAL_GAIN + (self.settings.gain - INITIAL_GAIN) * frac

    def _gravity_direction_sensor(self) -> np.ndarray:
        return q_rotate_vec(q_conj(self._q), np.array([0.0, 0.0, 1.0], dtype=np.float64))

    def _heading_error_deg(self, mag: np.ndarray) -> float:
        # The filter aligns the horizontal magnetic field with earth +x.
        h = q_rotate_vec(self._q, mag)
        if math.hypot(h[0], h[1]) <= 1e-9:
            return 0.0
        return abs(math.degrees(math.atan2(h[1], h[0])))

    def _restart_initialisation(self) -> None:
        if not self._initializing:
            logger.warning(
                "[AHRS] gyroscope exceeded %.0f dps; re-initialising",
                self.settings.gyroscope_range_dps,
            )
        self._initializing = True
        self._init_elapsed = 0.0
        self._accel_rejection_count = 0
        self._mag_rejection_count = 0

    def _reject_acceleration(self, acc: np.ndarray) -> bool:
        error_deg = angle_between_deg(acc, self._gravity_direction_sensor())
        if error_deg <= self.settings.acceleration_rejection_deg:
            self._accel_rejection_count = 0
            return False
        self._accel_rejection_count += 1
        if self._accel_rejection_count > self.settings.recovery_trigger_period:
            # Recovery: trust the accelerometer again and restart the count.
            self._accel_rejection_count = 0
            return False
        return True

    def _reject_magnetometer(self, mag: np.ndarray) -> bool:
        if self._heading_error_deg(mag) <= self.settings.magnetic_rejection_deg:
            self._mag_rejection_count = 0
            return False
        self._mag_rejection_count += 1
        if self._mag_rejection_count > self.settings.recovery_trigger_period:
            self._mag_rejection_count = 0
            return False
        return True

    def _update(self, gyr_rad_s, acc_m_s2, mag: Optional[np.ndarray], dt: float) -> None:
        dt = float(dt)
        gyr = as_vec3(gyr_rad_s)
        acc = as_vec3(acc_m_s2)
        if not (dt > 0.0) or not math.isfinite(dt):
            logger.warning("[AHRS] ignored sample with dt=%r", dt)
            return
        if not is_finite_vec(gyr) or not is_finite_vec(acc):
            logger.warning("[AHRS] ignored non-finite sample gyr=%s acc=%s", gyr, acc)
            return
        if mag is not None and not is_finite_vec(mag):
            mag = None

        self._gyro_clipped = bool(np.any(np.abs(gyr) >= self._gyro_limit))
        if self._gyro_clipped:
            self._restart_initialisation()

        acc_for_filter = acc
        if self._initializing:
            self._accel_rejected = False
            self._mag_rejected = False
        else:
            self._accel_rejected = self._reject_acceleration(acc)
            if self._accel_rejected:
                acc_for_filter = zeros3()
            self._mag_rejected = mag is not None and self._reject_magnetometer(mag)
            if self._mag_rejected:
                mag = None

        gain = self._current_gain()
        if mag is not None and not np.any(acc_for_filter):
            mag = None
        if np.any(gyr):
            self._filter.gain = gain
            self._filter.Dt = dt
            if mag is not None:
                q = self._filter.updateMARG(self._q.copy(), gyr=gyr, acc=acc_for_filter, mag=mag)
            else:
                q = self._filter.updateIMU(self._q.copy(), gyr=gyr, acc=acc_for_filter)
        else:
            # Madgwick returns q untouched for a zero gyro; still apply the correction.
            q = _correction_step(self._q, acc_for_filter, mag, gain, dt)
        q = np.asarray(q, dtype=np.float64)
        if not is_finite_vec(q):
            logger.warning("[AHRS] filter produced non-finite quaternion; sample dropped")
            return
        self._q = q

        g = self.settings.gravity_m_s2
        self._gravity = self._gravity_direction_sensor() * g
        self._linear_acc = acc - self._gravity
        self._earth_acc = q_rotate_vec(self._q, acc) - np.array([0.0, 0.0, g], dtype=np.float64)

        if self._initializing:
            self._init_elapsed += dt
            if self._init_elapsed >= self.settings.initialisation_period_s:
                self._initializing = False
                logger.info("[AHRS] initialisation complete after %.2fs", self._init_elapsed)
                if self.on_initialization_complete is not None:
                    self.on_initialization_complete()


def _correction_step(
    q: np.ndarray,
    acc: np.ndarray,
    mag: Optional[np.ndarray],
    gain: float,
    dt: float,
) -> np.ndarray:
    """Madgwick gradient-descent step toward the measured gravity (and field).

    Same objective function and Jacobian as ``Madgwick.updateIMU`` /
    ``updateMARG`` with the gyroscope term set to zero.
    """
    a_norm = np.linalg.norm(acc)
    if a_norm <= 0.0:
        return q.copy()
    a = acc / a_norm
    qw, qx, qy, qz = q / np.linalg.norm(q)

    f = [
        2.0 * (qx * qz - qw * qy) - a[0],
        2.0 * (qw * qx + qy * qz) - a[1],
        2.0 * (0.5 - qx**2 - qy**2) - a[2],
    ]
    J = [
        [-2.0 * qy, 2.0 * qz, -2.0 * qw, 2.0 * qx],
        [2.0 * qx, 2.0 * qw, 2.0 * qz, 2.0 * qy],
        [0.0, -4.0 * qx, -4.0 * qy, 0.0],
    ]
    if mag is not None and np.linalg.norm(mag) > 0.0:
        m = mag / np.linalg.norm(mag)
        h = q_rotate_vec(q, m)
        bx = math.hypot(h[0], h[1])
        bz = h[2]
        f += [
            2.0 * bx * (0.5 - qy**2 - qz**2) + 2.0 * bz * (qx * qz - qw * qy) - m[0],
            2.0 * bx * (qx * qy - qw * qz) + 2.0 * bz * (qw * qx + qy * qz) - m[1],
            2.0 * bx * (qw * qy + qx * qz) + 2.0 * bz * (0.5 - qx**2 - qy**2) - m[2],
        ]
        J += [
            [-2.0 * bz * qy, 2.0 * bz * qz, -4.0 * bx * qy - 2.0 * bz * qw, -4.0 * bx * qz + 2.0 * bz * qx],
            [-2.0 * bx * qz + 2.0 * bz * qx, 2.0 * bx * qy + 2.0 * bz * qw, 2.0 * bx * qx + 2.0 * bz * qz, -2.0 * bx * qw + 2.0 * bz * qy],
            [2.0 * bx * qy, 2.0 * bx * qz - 4.0 * bz * qx, 2.0 * bx * qw - 4.0 * bz * qy, 2.0 * bx * qx],
        ]

    gradient = np.asarray(J, dtype=np.float64).T @ np.asarray(f, dtype=np.float64)
    g_norm = np.linalg.norm(gradient)
    if g_norm <= 0.0:
        return q.copy()
    out = q - gain * dt * gradient / g_norm
    return q_normalize(out)
