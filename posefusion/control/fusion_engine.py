"""Pose fusion engine: IMU dead-reckoning blended with absolute position fixes.

The engine owns velocity and fused position. Two streams feed it:

- inertial ticks (high rate): gravity-free earth-frame acceleration plus the
  attitude estimator's orientation, which is mirrored verbatim;
- absolute measurements (low rate, irregular): a position and a confidence
  in [0, 1], e.g. from a camera solvePnP.

Per inertial tick the staleness predicate picks one of two modes:

- FRESH: an absolute measurement arrived within ``staleness_threshold_s``.
  The tick leaves position/velocity alone; the measurement blend owns them.
- STALE: no measurement yet, or the last one is too old. The tick
  dead-reckons (v += a*dt, p += v*dt) and damps velocity.

Threading: none. Calls must be serialized by the caller (single writer).
"""

from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..math3d.vector import as_vec3, clamp01, is_finite_vec, lerp, zeros3
from .pose import AbsoluteMeasurement, Pose6D, identity_pose

logger = logging.getLogger(__name__)


class FusionMode(enum.Enum):
    FRESH = "fresh"
    STALE = "stale"


class MeasurementStatus(enum.Enum):
    BLENDED_HIGH = "blended-high"
    BLENDED_LOW = "blended-low"
    REJECTED_OUT_OF_ORDER = "rejected-out-of-order"
    REJECTED_INVALID = "rejected-invalid"

    @property
    def accepted(self) -> bool:
        return self in (MeasurementStatus.BLENDED_HIGH, MeasurementStatus.BLENDED_LOW)


@dataclass(frozen=True)
class FusionSettings:
    staleness_threshold_s: float = 0.1
    high_confidence_cutoff: float = 0.7
    high_confidence_blend: float = 0.8
    low_confidence_blend_scale: float = 0.3
    velocity_damping: float = 0.98
    # Skip integration on ticks flagged as coming from a converging AHRS.
    suppress_while_initializing: bool = True

    def validate(self) -> None:
        if not (self.staleness_threshold_s >= 0.0 and math.isfinite(self.staleness_threshold_s)):
            raise ValueError(
                f"staleness_threshold_s must be finite and >= 0, got {self.staleness_threshold_s}"
            )
        for name in (
            "high_confidence_cutoff",
            "high_confidence_blend",
            "low_confidence_blend_scale",
            "velocity_damping",
        ):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0,1], got {value}")


@dataclass(slots=True)
class FusionStats:
    """Counters for caller errors and mode usage."""

    dead_reckoning_ticks: int = 0
    suppressed_ticks: int = 0
    blended_high: int = 0
    blended_low: int = 0
    negative_dt: int = 0
    out_of_order: int = 0
    clamped_confidence: int = 0
    invalid_measurements: int = 0


RejectionCallback = Callable[[AbsoluteMeasurement, MeasurementStatus], None]


class PoseFusionEngine:
    def __init__(
        self,
        initial_pose: Optional[Pose6D] = None,
        settings: Optional[FusionSettings] = None,
        clock: Callable[[], float] = time.monotonic,
        on_rejected: Optional[RejectionCallback] = None,
    ):
        self.settings = settings or FusionSettings()
        self.settings.validate()
        self.stats = FusionStats()
        self._clock = clock
        self._on_rejected = on_rejected

        pose = initial_pose or identity_pose()
        self._position = as_vec3(pose.position)
        self._orientation = np.array(pose.quaternion, dtype=np.float64)
        self._velocity = zeros3()
        self._last_abs_position = zeros3()
        self._last_abs_t: Optional[float] = None
        self._has_abs = False
        self._last_mode: Optional[FusionMode] = None

        logger.info(
            "[FUSION] engine ready (staleness=%.3fs, cutoff=%.2f, high_blend=%.2f, "
            "low_scale=%.2f, damping=%.3f)",
            self.settings.staleness_threshold_s,
            self.settings.high_confidence_cutoff,
            self.settings.high_confidence_blend,
            self.settings.low_confidence_blend_scale,
            self.settings.velocity_damping,
        )

    # -- read-only views ---------------------------------------------------

    @property
    def velocity(self) -> np.ndarray:
        return self._velocity.copy()

    @property
    def orientation(self) -> np.ndarray:
        return self._orientation.copy()

    @property
    def has_absolute_measurement(self) -> bool:
        return self._has_abs

    @property
    def last_absolute_timestamp(self) -> Optional[float]:
        return self._last_abs_t

    @property
    def last_absolute_position(self) -> Optional[np.ndarray]:
        if not self._has_abs:
            return None
        return self._last_abs_position.copy()

    def current_pose(self) -> Pose6D:
        return Pose6D(position=self._position.copy(), quaternion=self._orientation.copy())

    def mode(self, now: Optional[float] = None) -> FusionMode:
        if not self._has_abs:
            return FusionMode.STALE
        if now is None:
            now = self._clock()
        if (now - self._last_abs_t) > self.settings.staleness_threshold_s:
            return FusionMode.STALE
        return FusionMode.FRESH

    # -- mutation ----------------------------------------------------------

    def reset(self, initial_position, initial_orientation) -> None:
        self._position = as_vec3(initial_position)
        self._orientation = np.array(initial_orientation, dtype=np.float64)
        self._velocity = zeros3()
        self._last_abs_position = zeros3()
        self._last_abs_t = None
        self._has_abs = False
        self._last_mode = None
        logger.info(
            "[FUSION] reset to position [%.3f, %.3f, %.3f]",
            self._position[0],
            self._position[1],
            self._position[2],
        )

    def on_inertial_tick(
        self,
        earth_acceleration,
        dt: float,
        now: Optional[float] = None,
        orientation=None,
        initializing: bool = False,
    ) -> FusionMode:
        """Advance one inertial sample and return the mode used for it."""
        if orientation is not None:
            self._orientation = np.array(orientation, dtype=np.float64)

        dt = float(dt)
        if not (dt >= 0.0) or not math.isfinite(dt):
            self.stats.negative_dt += 1
            logger.warning("[FUSION] rejected inertial dt=%r (treated as 0)", dt)
            dt = 0.0

        if now is None:
            now = self._clock()
        mode = self.mode(now)
        if mode is not self._last_mode:
            logger.debug("[FUSION] mode %s -> %s", self._last_mode, mode)
            self._last_mode = mode

        if mode is FusionMode.FRESH:
            return mode

        if initializing and self.settings.suppress_while_initializing:
            self.stats.suppressed_ticks += 1
            return mode

        acc = as_vec3(earth_acceleration)
        if not is_finite_vec(acc):
            logger.warning("[FUSION] non-finite earth acceleration ignored: %s", acc)
            return mode

        self._velocity += acc * dt
        self._position += self._velocity * dt
        self._velocity *= self.settings.velocity_damping
        self.stats.dead_reckoning_ticks += 1
        return mode

    def on_absolute_measurement(self, position, confidence: float, now: float) -> MeasurementStatus:
        """Blend one absolute position fix by confidence.

        Out-of-order fixes (``now`` earlier than the last accepted one) and
        non-finite positions/timestamps are rejected without touching state.
        """
        try:
            p = as_vec3(position)
            now = float(now)
            confidence = float(confidence)
        except (TypeError, ValueError):
            p = None
        if p is None or not is_finite_vec(p) or not math.isfinite(now):
            self.stats.invalid_measurements += 1
            logger.warning("[FUSION] rejected invalid measurement position=%r t=%r", position, now)
            return self._reject(position, confidence, now, MeasurementStatus.REJECTED_INVALID)

        if self._has_abs and now < self._last_abs_t:
            self.stats.out_of_order += 1
            logger.warning(
                "[FUSION] rejected out-of-order measurement t=%.6f (last=%.6f)",
                now,
                self._last_abs_t,
            )
            return self._reject(p, confidence, now, MeasurementStatus.REJECTED_OUT_OF_ORDER)

        conf = clamp01(confidence)
        if conf != confidence:
            self.stats.clamped_confidence += 1
            logger.warning("[FUSION] confidence %r clamped to %.3f", confidence, conf)

        # Elapsed since the previous fix, read before the bookkeeping update.
        elapsed = (now - self._last_abs_t) if self._has_abs else 0.0

        if conf > self.settings.high_confidence_cutoff:
            self._position = lerp(self._position, p, self.settings.high_confidence_blend)
            if self._has_abs and elapsed > 0.0:
                self._velocity = (p - self._last_abs_position) / elapsed
            self.stats.blended_high += 1
            status = MeasurementStatus.BLENDED_HIGH
        else:
            predicted = self._position + self._velocity * elapsed
            self._position = lerp(
                predicted, p, conf * self.settings.low_confidence_blend_scale
            )
            self.stats.blended_low += 1
            status = MeasurementStatus.BLENDED_LOW

        self._last_abs_position = p
        self._last_abs_t = now
        self._has_abs = True
        return status

    def apply_measurement(self, measurement: AbsoluteMeasurement) -> MeasurementStatus:
        return self.on_absolute_measurement(
            measurement.position, measurement.confidence, measurement.timestamp
        )

    def _reject(self, position, confidence, now, status: MeasurementStatus) -> MeasurementStatus:
        if self._on_rejected is not None:
            self._on_rejected(
                AbsoluteMeasurement(position=position, confidence=confidence, timestamp=now),
                status,
            )
        return status
