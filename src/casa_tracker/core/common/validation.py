#!/usr/bin/env python3
"""
Input checks applied at the API boundary before data enters the tracker.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np


class InputValidationError(ValueError):
    """Raised when calibration, detections or cost matrices are malformed."""


def as_detection_array(detections: Iterable[Sequence[float]]) -> np.ndarray:
    """Return detections as a finite (N, 2) float array.

    Accepts any iterable of (x, y) pairs, an (N, 2) array, or objects
    exposing ``x`` and ``y`` attributes.
    """
    if isinstance(detections, np.ndarray):
        try:
            arr = detections.astype(float, copy=False)
        except (TypeError, ValueError) as e:
            raise InputValidationError(f"Malformed detection array: {e}") from e
    else:
        rows = []
        for det in detections:
            if hasattr(det, "x") and hasattr(det, "y"):
                rows.append((det.x, det.y))
            else:
                rows.append(tuple(det))
        try:
            arr = np.asarray(rows, dtype=float)
        except (TypeError, ValueError) as e:
            raise InputValidationError(f"Malformed detection list: {e}") from e

    if arr.size == 0:
        return np.empty((0, 2), dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise InputValidationError(
            f"Detections must be (x, y) pairs, got array of shape {arr.shape}"
        )
    if not np.all(np.isfinite(arr)):
        bad = int(np.count_nonzero(~np.isfinite(arr).all(axis=1)))
        raise InputValidationError(f"{bad} detection(s) have NaN or infinite coordinates")
    return arr


def validate_timestamp(timestamp: float, last_timestamp: Optional[float] = None) -> float:
    if timestamp is None or not math.isfinite(timestamp):
        raise InputValidationError(f"Timestamp must be finite, got {timestamp}")
    if last_timestamp is not None and timestamp < last_timestamp:
        raise InputValidationError(
            f"Frames must arrive in time order: {timestamp} < {last_timestamp}"
        )
    return float(timestamp)


def validate_cost_matrix(cost) -> Tuple[np.ndarray, int, int]:
    """Return the cost matrix as float array plus its (rows, cols)."""
    arr = np.asarray(cost, dtype=float)
    if arr.ndim != 2:
        raise InputValidationError(f"Cost matrix must be 2-D, got shape {arr.shape}")
    if arr.size and not np.all(np.isfinite(arr)):
        raise InputValidationError("Cost matrix contains NaN or infinite entries")
    if arr.size and arr.min() < 0:
        raise InputValidationError("Cost matrix must be non-negative")
    return arr, arr.shape[0], arr.shape[1]
