"""Small 3-vector helpers used by the fusion engine."""

from __future__ import annotations

import math

import numpy as np


def as_vec3(v) -> np.ndarray:
    """Copy v into a fresh float64 array of shape (3,)."""
    out = np.array(v, dtype=np.float64).reshape(-1)
    if out.size != 3:
        raise ValueError(f"Expected 3-vector, got shape {np.shape(v)}")
    return out


def zeros3() -> np.ndarray:
    return np.zeros(3, dtype=np.float64)


def is_finite_vec(v: np.ndarray) -> bool:
    return bool(np.isfinite(v).all())


def clamp01(x: float) -> float:
    x = float(x)
    if math.isnan(x):
        return 0.0
    return max(0.0, min(1.0, x))


def lerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    """Linear interpolation a + (b - a) * t with t clamped to [0, 1]."""
    t = clamp01(t)
    return a + (b - a) * t
