"""Pose and sensor sample data structures for headset tracking."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..math3d.quaternion import identity_q
from ..math3d.vector import zeros3


@dataclass(slots=True)
class Pose6D:
    """Head pose in world space.

    position:
      3D translation [x, y, z], meters.
    quaternion:
      Orientation quaternion [w, x, y, z], unit length.
    """

    position: np.ndarray
    quaternion: np.ndarray

    def copy(self) -> "Pose6D":
        return Pose6D(position=self.position.copy(), quaternion=self.quaternion.copy())


def identity_pose() -> Pose6D:
    return Pose6D(position=zeros3(), quaternion=identity_q())


@dataclass(slots=True)
class AttitudeSample:
    """One snapshot of an attitude estimator's outputs.

    earth_acceleration:
      Gravity removed, earth frame, m/s^2.
    linear_acceleration:
      Gravity removed, sensor frame, m/s^2.
    gravity:
      Gravity in sensor frame, m/s^2.
    """

    orientation: np.ndarray
    earth_acceleration: np.ndarray
    linear_acceleration: np.ndarray
    gravity: np.ndarray
    initializing: bool
    acceleration_rejected: bool = False
    magnetic_rejected: bool = False
    gyroscope_clipped: bool = False


@dataclass(slots=True)
class AbsoluteMeasurement:
    """Absolute position fix (e.g. a camera solvePnP result)."""

    position: np.ndarray
    confidence: float
    timestamp: float
