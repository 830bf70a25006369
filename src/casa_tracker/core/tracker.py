#!/usr/bin/env python3
"""
Multi-object tracker: Kalman prediction + Hungarian association.

Per frame, every live track predicts its next position, the predicted
positions are matched one-to-one against the new detections by minimum total
Euclidean distance, and matches beyond ``max_match_distance`` are treated as
misses. Unclaimed detections start new tracks; tracks missing for more than
``max_missed_frames`` frames are terminated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist

from .assignment import solve_assignment
from .common import Calibration, TrackRecord, iter_detection_frames, path_length
from .common.validation import as_detection_array, validate_timestamp
from .kalman_track import (
    INITIAL_COVARIANCE,
    MEASUREMENT_NOISE,
    PROCESS_NOISE_POSITION,
    PROCESS_NOISE_VELOCITY,
    QUALITY_REFERENCE_SPEED,
    KalmanTrack,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, float, Optional[int]], None]


@dataclass
class TrackerConfig:
    max_missed_frames: int = 8
    max_match_distance: float = 60.0  # px

    min_track_duration: float = 0.5  # s
    min_track_points: int = 3

    quality_reference_speed: float = QUALITY_REFERENCE_SPEED  # um/s

    process_noise_position: float = PROCESS_NOISE_POSITION
    process_noise_velocity: float = PROCESS_NOISE_VELOCITY
    measurement_noise: float = MEASUREMENT_NOISE
    initial_covariance: float = INITIAL_COVARIANCE


class MultiObjectTracker:
    def __init__(
        self,
        cfg: Optional[TrackerConfig] = None,
        calibration: Optional[Calibration] = None,
    ):
        self.cfg = cfg or TrackerConfig()
        self.calibration = calibration
        self.tracks: Dict[int, KalmanTrack] = {}
        self.finished: List[TrackRecord] = []
        self.next_id: int = 1
        self.frames_processed: int = 0
        self.dropped_count: int = 0
        self.last_timestamp: Optional[float] = None

    @property
    def tracks_created(self) -> int:
        """Every track ever spawned, including ones later dropped as noise."""
        return self.next_id - 1

    # --------------- main update ---------------
    def update(
        self,
        detections: Iterable[Sequence[float]],
        timestamp: float,
        frame_index: Optional[int] = None,
    ) -> List[KalmanTrack]:
        """Process one frame of detections; return the live tracks."""
        dets = as_detection_array(detections)
        timestamp = validate_timestamp(timestamp, self.last_timestamp)
        if frame_index is None:
            frame_index = self.frames_processed

        self.last_timestamp = timestamp
        self.frames_processed += 1

        if not self.tracks:
            for x, y in dets:
                self._spawn(x, y, timestamp, frame_index)
        elif len(dets) == 0:
            for trk in self.tracks.values():
                trk.predict(1.0)
                trk.mark_missed()
        else:
            self._associate(dets, timestamp, frame_index)

        self._prune(frame_index)
        return list(self.tracks.values())

    def _associate(self, dets: np.ndarray, timestamp: float, frame_index: int):
        live = list(self.tracks.values())
        predicted = np.array([trk.predict(1.0) for trk in live])

        C = cdist(predicted, dets)
        assignment = solve_assignment(C)
        n_trk, n_det = C.shape

        assigned_det = set()
        for i, trk in enumerate(live):
            j = int(assignment[i])
            if j < n_det and C[i, j] <= self.cfg.max_match_distance:
                trk.correct(dets[j, 0], dets[j, 1], timestamp, frame_index)
                assigned_det.add(j)
            else:
                trk.mark_missed()

        spawned = 0
        for j in range(n_det):
            if j not in assigned_det:
                self._spawn(dets[j, 0], dets[j, 1], timestamp, frame_index)
                spawned += 1

        logger.debug(
            "Frame %d: %d tracks, %d detections, %d matched, %d spawned",
            frame_index,
            n_trk,
            n_det,
            len(assigned_det),
            spawned,
        )

    def _spawn(self, x: float, y: float, t: float, frame_index: int):
        speed_scale = self.calibration.microns_per_pixel if self.calibration else 1.0
        trk = KalmanTrack(
            self.next_id,
            float(x),
            float(y),
            t,
            frame=frame_index,
            process_noise_position=self.cfg.process_noise_position,
            process_noise_velocity=self.cfg.process_noise_velocity,
            measurement_noise=self.cfg.measurement_noise,
            initial_covariance=self.cfg.initial_covariance,
            quality_reference_speed=self.cfg.quality_reference_speed,
            speed_scale=speed_scale,
        )
        self.tracks[trk.id] = trk
        self.next_id += 1

    # --------------- lifecycle ---------------
    def _meets_thresholds(self, trk: KalmanTrack) -> bool:
        return (
            trk.point_count >= self.cfg.min_track_points
            and trk.duration() >= self.cfg.min_track_duration
        )

    def is_valid(self, trk: KalmanTrack) -> bool:
        return (
            self._meets_thresholds(trk)
            and trk.missed_frames <= self.cfg.max_missed_frames
        )

    def _prune(self, frame_index: int):
        alive: Dict[int, KalmanTrack] = {}
        for track_id, trk in self.tracks.items():
            if trk.missed_frames <= self.cfg.max_missed_frames:
                alive[track_id] = trk
            elif self._meets_thresholds(trk):
                self.finished.append(trk.to_record())
                logger.debug(
                    "Frame %d: track %d finished (%d points, %.2fs)",
                    frame_index,
                    track_id,
                    trk.point_count,
                    trk.duration(),
                )
            else:
                self.dropped_count += 1
        self.tracks = alive

    # --------------- queries / export ---------------
    def get_track(self, track_id: int) -> Optional[KalmanTrack]:
        return self.tracks.get(track_id)

    def valid_tracks(self) -> List[TrackRecord]:
        """Finished tracks plus live tracks that currently satisfy thresholds."""
        records = list(self.finished)
        records.extend(trk.to_record() for trk in self.tracks.values() if self.is_valid(trk))
        return sorted(records, key=lambda r: r.track_id)

    def export_tracks(self, calibration: Optional[Calibration] = None) -> List[TrackRecord]:
        """Valid tracks, converted to microns when a calibration is given."""
        records = self.valid_tracks()
        if calibration is not None:
            records = [r.to_microns(calibration) for r in records]
        return records

    def statistics(self) -> Dict[str, Any]:
        valid = self.valid_tracks()
        durations = [r.duration for r in valid]
        lengths = [
            path_length(np.array([p.x for p in r.points]), np.array([p.y for p in r.points]))
            for r in valid
        ]
        return {
            "frames_processed": self.frames_processed,
            "tracks_created": self.tracks_created,
            "live_tracks": len(self.tracks),
            "finished_tracks": len(self.finished),
            "dropped_tracks": self.dropped_count,
            "valid_tracks": len(valid),
            "average_track_duration": float(np.mean(durations)) if valid else 0.0,
            "average_path_length": float(np.mean(lengths)) if valid else 0.0,
            "average_quality_score": (
                float(np.mean([r.quality_score for r in valid])) if valid else 0.0
            ),
        }

    # --------------- driving a whole stream ---------------
    def run(
        self,
        frames: Iterable[Tuple[int, float, Iterable[Sequence[float]]]],
        progress_callback: Optional[ProgressCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        total_frames: Optional[int] = None,
    ) -> "MultiObjectTracker":
        """
        Feed an ordered stream of (frame_index, timestamp, detections).

        ``should_stop`` is polled before each frame; once it returns True the
        loop ends with the tracker in the state left by the last full frame.
        ``progress_callback(frame_index, timestamp, total_frames)`` is called
        after every processed frame.
        """
        for frame_index, timestamp, detections in frames:
            if should_stop is not None and should_stop():
                logger.info("Tracking stopped before frame %d", frame_index)
                break
            self.update(detections, timestamp, frame_index)
            if progress_callback is not None:
                progress_callback(frame_index, timestamp, total_frames)

        logger.info(
            "Tracking complete: %d frames, %d tracks created, %d valid, %d dropped",
            self.frames_processed,
            self.tracks_created,
            len(self.valid_tracks()),
            self.dropped_count,
        )
        return self


def run_tracking_with_config(
    detections_df: pd.DataFrame,
    tracker_cfg: TrackerConfig,
    calibration: Optional[Calibration] = None,
    progress_callback: Optional[ProgressCallback] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> MultiObjectTracker:
    """Run the tracker over a detections table with columns frame, x, y[, t]."""
    tracker = MultiObjectTracker(tracker_cfg, calibration)
    if detections_df.empty:
        return tracker

    total_frames = int(detections_df["frame"].max() - detections_df["frame"].min() + 1)
    tracker.run(
        iter_detection_frames(detections_df, calibration),
        progress_callback=progress_callback,
        should_stop=should_stop,
        total_frames=total_frames,
    )
    return tracker


def tracks_to_dataframe(records: Sequence[TrackRecord]) -> pd.DataFrame:
    rows = []
    for rec in records:
        for i, p in enumerate(rec.points):
            rows.append(
                {
                    "track_id": rec.track_id,
                    "frame": p.frame,
                    "x": p.x,
                    "y": p.y,
                    "t": p.t,
                    "vx": p.vx,
                    "vy": p.vy,
                    "accumulated_length": i + 1,
                    "track_length": rec.point_count,
                    "quality_score": rec.quality_score,
                }
            )

    columns = [
        "track_id",
        "frame",
        "x",
        "y",
        "t",
        "vx",
        "vy",
        "accumulated_length",
        "track_length",
        "quality_score",
    ]
    return pd.DataFrame(rows, columns=columns)
