#!/usr/bin/env python3
"""
File I/O operations used across multiple modules in the CASA tracking project.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

from .data_structures import Calibration, TrackPoint, TrackRecord
from .validation import InputValidationError

logger = logging.getLogger(__name__)

DETECTION_COLUMNS = ["frame", "x", "y"]
TRACK_COLUMNS = ["track_id", "x", "y", "t"]


def load_detections(path) -> pd.DataFrame:
    """Return a detections table with at least columns frame, x, y.
    Input: CSV (or pickled DataFrame) as written by an external detector."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    df = pd.read_pickle(path) if path.suffix == ".pkl" else pd.read_csv(path)
    if missing := set(DETECTION_COLUMNS) - set(df.columns):
        raise InputValidationError(f"Missing {sorted(missing)} in {path.name}")
    return df


def iter_detection_frames(
    detections_df: pd.DataFrame,
    calibration: Optional[Calibration] = None,
    fill_gaps: bool = True,
) -> Iterator[Tuple[int, float, np.ndarray]]:
    """
    Yield (frame_index, timestamp_seconds, detections) in frame order.

    Timestamps come from a ``t`` column when present, otherwise from the
    calibration frame rate. With ``fill_gaps`` frames inside the observed
    range that have no rows are yielded with an empty detection array, so the
    tracker still counts them as missed frames. Gap timestamps follow the same
    clock as the observed frames: linear in frame index between the
    neighbouring ``t`` values, or ``calibration.frame_time`` without a ``t``
    column.
    """
    if detections_df.empty:
        return

    has_time = "t" in detections_df.columns
    if not has_time and calibration is None:
        raise InputValidationError(
            "Detections have no 't' column and no calibration was given to derive timestamps"
        )

    grouped = {
        int(frame): group for frame, group in detections_df.groupby("frame", sort=True)
    }
    observed = sorted(grouped)
    frames = list(range(observed[0], observed[-1] + 1)) if fill_gaps else observed

    if has_time:
        observed_t = [float(grouped[f]["t"].iloc[0]) for f in observed]
        times = np.interp(frames, observed, observed_t)
    else:
        times = [calibration.frame_time(f) for f in frames]

    for frame, t in zip(frames, times):
        group = grouped.get(frame)
        if group is None:
            yield frame, float(t), np.empty((0, 2))
        else:
            yield frame, float(t), group[["x", "y"]].to_numpy(dtype=float)


def tracks_from_dataframe(tracks_df: pd.DataFrame) -> List[TrackRecord]:
    """Rebuild TrackRecords from the flat table written by the tracking phase."""
    if tracks_df.empty:
        return []
    if missing := set(TRACK_COLUMNS) - set(tracks_df.columns):
        raise InputValidationError(f"Missing {sorted(missing)} in tracks table")

    records = []
    for track_id, group in tracks_df.groupby("track_id", sort=True):
        group = group.sort_values("t")
        points = []
        for row in group.itertuples(index=False):
            vx = getattr(row, "vx", None)
            vy = getattr(row, "vy", None)
            frame = getattr(row, "frame", None)
            points.append(
                TrackPoint(
                    x=float(row.x),
                    y=float(row.y),
                    t=float(row.t),
                    vx=None if vx is None or pd.isna(vx) else float(vx),
                    vy=None if vy is None or pd.isna(vy) else float(vy),
                    frame=None if frame is None or pd.isna(frame) else int(frame),
                )
            )
        quality = (
            float(group["quality_score"].iloc[0])
            if "quality_score" in group.columns
            else 0.0
        )
        records.append(
            TrackRecord(track_id=int(track_id), points=tuple(points), quality_score=quality)
        )
    return records


def load_tracks(path) -> List[TrackRecord]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    logger.info("Loading tracks: %s", path.name)
    return tracks_from_dataframe(pd.read_csv(path))
