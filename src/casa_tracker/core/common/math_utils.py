#!/usr/bin/env python3
"""
Mathematical utilities and algorithms used across multiple modules in the CASA tracking project.
"""

import numpy as np
from typing import Optional, Tuple


def calculate_distances(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Calculate Euclidean distances between consecutive points."""
    dx = np.diff(x)
    dy = np.diff(y)
    return np.sqrt(dx**2 + dy**2)


def path_length(x: np.ndarray, y: np.ndarray) -> float:
    """Sum of consecutive point-to-point distances."""
    if len(x) < 2:
        return 0.0
    return float(np.sum(calculate_distances(x, y)))


def centered_moving_average(values: np.ndarray, half_window: int) -> np.ndarray:
    """
    Centered moving average over +/- half_window samples.

    The window is clamped at both ends, so the first and last samples are
    averaged over fewer neighbours instead of being dropped.
    """
    values = np.asarray(values, dtype=float)
    n = len(values)
    if n == 0 or half_window <= 0:
        return values.copy()

    csum = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(n)
    start = np.clip(idx - half_window, 0, n)
    end = np.clip(idx + half_window + 1, 0, n)
    return (csum[end] - csum[start]) / (end - start)


def smooth_path(
    x: np.ndarray, y: np.ndarray, half_window: int = 3
) -> Tuple[np.ndarray, np.ndarray]:
    """Average path: moving average applied independently to x and y."""
    return centered_moving_average(x, half_window), centered_moving_average(y, half_window)


def lateral_offsets(
    px: np.ndarray, py: np.ndarray, qx: np.ndarray, qy: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Distance and side of each raw point relative to a polyline.

    For every point (px, py) the closest segment of the polyline (qx, qy) is
    found. Returns the perpendicular distances to that segment and the sign of
    the cross product (+1 left, -1 right, 0 on the line).
    """
    px = np.asarray(px, dtype=float)
    py = np.asarray(py, dtype=float)
    qx = np.asarray(qx, dtype=float)
    qy = np.asarray(qy, dtype=float)

    if len(qx) < 2:
        d = np.hypot(px - qx[0], py - qy[0]) if len(qx) else np.zeros_like(px)
        return d, np.zeros_like(px)

    ax, ay = qx[:-1], qy[:-1]
    sx, sy = np.diff(qx), np.diff(qy)
    seg_len2 = sx**2 + sy**2

    # (points, segments)
    rx = px[:, None] - ax[None, :]
    ry = py[:, None] - ay[None, :]
    with np.errstate(invalid="ignore", divide="ignore"):
        u = np.where(seg_len2 > 0, (rx * sx + ry * sy) / seg_len2, 0.0)
    u = np.clip(u, 0.0, 1.0)
    dx = rx - u * sx
    dy = ry - u * sy
    dist = np.hypot(dx, dy)

    nearest = np.argmin(dist, axis=1)
    rows = np.arange(len(px))
    cross = sx[nearest] * ry[rows, nearest] - sy[nearest] * rx[rows, nearest]
    seg_len = np.sqrt(seg_len2[nearest])
    # distance to the segment line; points past the path ends project onto its extension
    with np.errstate(invalid="ignore", divide="ignore"):
        distances = np.where(seg_len > 0, np.abs(cross) / seg_len, dist[rows, nearest])
    return distances, np.sign(cross)


def count_sign_changes(signs: np.ndarray) -> int:
    """Count strict sign changes between consecutive entries; zeros are skipped."""
    s = np.asarray(signs)
    s = s[s != 0]
    if len(s) < 2:
        return 0
    return int(np.count_nonzero(s[:-1] * s[1:] < 0))


def clamp_ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """numerator / denominator clamped to [0, 1]; None when undefined."""
    if numerator is None or denominator is None:
        return None
    if not np.isfinite(numerator) or not np.isfinite(denominator) or denominator <= 0:
        return None
    return float(np.clip(numerator / denominator, 0.0, 1.0))
