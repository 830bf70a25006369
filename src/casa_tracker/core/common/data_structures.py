#!/usr/bin/env python3
"""
Data structures used across multiple modules in the CASA tracking project.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .validation import InputValidationError


@dataclass
class Detection:
    """Detection data structure used across multiple modules."""

    frame: int
    x: float
    y: float


@dataclass(frozen=True)
class TrackPoint:
    """A committed, timestamped position on a track."""

    x: float
    y: float
    t: float
    vx: Optional[float] = None
    vy: Optional[float] = None
    frame: Optional[int] = None

    @property
    def has_velocity(self) -> bool:
        return self.vx is not None and self.vy is not None

    def speed(self) -> Optional[float]:
        if not self.has_velocity:
            return None
        return math.hypot(self.vx, self.vy)

    def scaled(self, factor: float) -> "TrackPoint":
        """Return a copy with positions and velocities multiplied by factor."""
        return replace(
            self,
            x=self.x * factor,
            y=self.y * factor,
            vx=self.vx * factor if self.vx is not None else None,
            vy=self.vy * factor if self.vy is not None else None,
        )


@dataclass(frozen=True)
class TrackRecord:
    """Finalized track handed from the tracker to the kinematic analyzer."""

    track_id: int
    points: Tuple[TrackPoint, ...]
    quality_score: float = 0.0

    @property
    def point_count(self) -> int:
        return len(self.points)

    @property
    def duration(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return self.points[-1].t - self.points[0].t

    def to_microns(self, calibration: "Calibration") -> "TrackRecord":
        return replace(
            self,
            points=tuple(
                p.scaled(calibration.microns_per_pixel) for p in self.points
            ),
        )


@dataclass(frozen=True)
class Calibration:
    """Spatial and temporal calibration for one analysis run."""

    microns_per_pixel: float
    fps: float

    def __post_init__(self):
        if not math.isfinite(self.microns_per_pixel) or self.microns_per_pixel <= 0:
            raise InputValidationError(
                f"microns_per_pixel must be a positive number, got {self.microns_per_pixel}"
            )
        if not math.isfinite(self.fps) or self.fps <= 0:
            raise InputValidationError(f"fps must be a positive number, got {self.fps}")

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.fps

    def frame_time(self, frame_index: int) -> float:
        """Timestamp in seconds of a frame index."""
        return frame_index / self.fps
