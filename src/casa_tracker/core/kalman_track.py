#!/usr/bin/env python3
"""
Constant-velocity Kalman track for a single sperm head.

State: [x, y, vx, vy] ; Measurement: [x, y]

The transition matrix advances by one frame per prediction. Wall-clock time
is kept separately in the committed TrackPoints and only used for velocity,
duration and path computations.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np
from filterpy.kalman import KalmanFilter

from .common import TrackPoint, TrackRecord, path_length


# Default variances (per frame step)
PROCESS_NOISE_POSITION = 1e-2
PROCESS_NOISE_VELOCITY = 1e-1
MEASUREMENT_NOISE = 1e-1
INITIAL_COVARIANCE = 1.0
QUALITY_REFERENCE_SPEED = 50.0  # um/s


class KalmanTrack:
    """One tracked object: filter state plus its committed point history."""

    def __init__(
        self,
        track_id: int,
        x: float,
        y: float,
        t: float,
        frame: Optional[int] = None,
        process_noise_position: float = PROCESS_NOISE_POSITION,
        process_noise_velocity: float = PROCESS_NOISE_VELOCITY,
        measurement_noise: float = MEASUREMENT_NOISE,
        initial_covariance: float = INITIAL_COVARIANCE,
        quality_reference_speed: float = QUALITY_REFERENCE_SPEED,
        speed_scale: float = 1.0,
    ):
        self.id = track_id
        self.missed_frames: int = 0
        self.quality_score: float = 0.0
        self.quality_reference_speed = quality_reference_speed
        self.speed_scale = speed_scale

        self.kf = self._init_kalman(
            x,
            y,
            process_noise_position,
            process_noise_velocity,
            measurement_noise,
            initial_covariance,
        )

        self._points: List[TrackPoint] = [TrackPoint(float(x), float(y), float(t), frame=frame)]

    # --------------- internal helpers ---------------
    def _init_kalman(
        self,
        x,
        y,
        process_noise_position,
        process_noise_velocity,
        measurement_noise,
        initial_covariance,
    ) -> KalmanFilter:
        kf = KalmanFilter(dim_x=4, dim_z=2)
        kf.x = np.array([x, y, 0.0, 0.0], dtype=float)
        kf.F = self.transition_matrix(1.0)
        kf.H = np.array([[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]])
        kf.P = np.eye(4) * initial_covariance
        kf.Q = np.diag(
            [
                process_noise_position,
                process_noise_position,
                process_noise_velocity,
                process_noise_velocity,
            ]
        )
        kf.R = np.eye(2) * measurement_noise
        return kf

    @staticmethod
    def transition_matrix(dt: float = 1.0) -> np.ndarray:
        return np.array(
            [
                [1.0, 0.0, dt, 0.0],
                [0.0, 1.0, 0.0, dt],
                [0.0, 0.0, 1.0, 0.0],
                [0.0, 0.0, 0.0, 1.0],
            ]
        )

    # --------------- filter ---------------
    def predict(self, dt: float = 1.0) -> Tuple[float, float]:
        """Advance state and covariance by dt frames; return predicted (x, y)."""
        if dt == 1.0:
            self.kf.predict()
        else:
            self.kf.predict(F=self.transition_matrix(dt))
        return float(self.kf.x[0]), float(self.kf.x[1])

    def correct(self, x: float, y: float, t: float, frame: Optional[int] = None) -> TrackPoint:
        """Fuse a measurement and commit it as a new TrackPoint."""
        self.kf.update([x, y])

        self.missed_frames = 0

        last = self._points[-1]
        dt = t - last.t
        if dt > 0:
            vx, vy = (x - last.x) / dt, (y - last.y) / dt
        else:
            vx = vy = None
        point = TrackPoint(float(x), float(y), float(t), vx, vy, frame)
        self._points.append(point)

        self._update_quality_score()
        return point

    def mark_missed(self):
        self.missed_frames += 1

    def _update_quality_score(self):
        # Heuristic only: mean speed against a reference speed. Stationary
        # debris scores near 0, a fast swimmer saturates at 1.
        speeds = [p.speed() for p in self._points if p.has_velocity]
        if not speeds:
            return
        mean_speed = float(np.mean(speeds)) * self.speed_scale
        if self.quality_reference_speed <= 0:
            self.quality_score = 1.0 if mean_speed > 0 else 0.0
            return
        self.quality_score = min(mean_speed / self.quality_reference_speed, 1.0)

    # --------------- accessors ---------------
    @property
    def points(self) -> Tuple[TrackPoint, ...]:
        return tuple(self._points)

    @property
    def point_count(self) -> int:
        return len(self._points)

    @property
    def position(self) -> Tuple[float, float]:
        return float(self.kf.x[0]), float(self.kf.x[1])

    @property
    def last_point(self) -> TrackPoint:
        return self._points[-1]

    def current_velocity(self) -> Tuple[float, float]:
        """Velocity (per frame) from the filter state, not from the points."""
        return float(self.kf.x[2]), float(self.kf.x[3])

    def duration(self) -> float:
        if len(self._points) < 2:
            return 0.0
        return self._points[-1].t - self._points[0].t

    def path_length(self) -> float:
        xs = np.array([p.x for p in self._points])
        ys = np.array([p.y for p in self._points])
        return path_length(xs, ys)

    def to_record(self) -> TrackRecord:
        return TrackRecord(
            track_id=self.id, points=self.points, quality_score=self.quality_score
        )

    def __repr__(self) -> str:
        return (
            f"KalmanTrack(id={self.id}, points={len(self._points)}, "
            f"missed={self.missed_frames}, quality={self.quality_score:.3f})"
        )
