"""Fixed-step ODE integrators for the intracellular process models.

Both integrators take an ``equations(t, y) -> dydt`` callable and integrate over
[t0, tf] with a step that divides the window evenly:
    n_steps = int((tf - t0) / h),  h = (tf - t0) / n_steps
"""

from __future__ import annotations

from typing import Callable

import numpy as np

Equations = Callable[[float, np.ndarray], np.ndarray]


def _grid(t0: float, tf: float, h: float) -> tuple[int, float]:
    if h <= 0:
        raise ValueError("step size must be positive")
    if tf <= t0:
        raise ValueError("tf must be greater than t0")
    n_steps = max(int((tf - t0) / h), 1)
    return n_steps, (tf - t0) / n_steps


def euler(equations: Equations, t0: float, y0: np.ndarray, tf: float, h: float) -> np.ndarray:
    """Integrate with the explicit (forward) Euler method."""
    n_steps, h = _grid(t0, tf, h)
    y = np.array(y0, dtype=np.float64, copy=True)
    t = float(t0)
    for _ in range(n_steps):
        y = y + h * np.asarray(equations(t, y), dtype=np.float64)
        t += h
    return y


def rk4(equations: Equations, t0: float, y0: np.ndarray, tf: float, h: float) -> np.ndarray:
    """Integrate with the classical 4th-order Runge-Kutta method."""
    n_steps, h = _grid(t0, tf, h)
    y = np.array(y0, dtype=np.float64, copy=True)
    t = float(t0)
    half = h / 2.0
    for _ in range(n_steps):
        k1 = np.asarray(equations(t, y), dtype=np.float64)
        k2 = np.asarray(equations(t + half, y + half * k1), dtype=np.float64)
        k3 = np.asarray(equations(t + half, y + half * k2), dtype=np.float64)
        k4 = np.asarray(equations(t + h, y + h * k3), dtype=np.float64)
        y = y + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)
        t += h
    return y
