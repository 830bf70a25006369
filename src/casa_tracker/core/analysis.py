#!/usr/bin/env python3
"""
Sperm Motility Kinematics (CASA)
================================

Derives per-track kinematic parameters and the aggregate CASA summary from
finalized tracks whose positions are in microns and timestamps in seconds.

Per track:
    VCL  curvilinear velocity   raw path length / duration
    VSL  straight-line velocity first-to-last distance / duration
    VAP  average-path velocity  smoothed path length / duration
    ALH  lateral head amplitude max distance of raw points from smoothed path
    BCF  beat-cross frequency   side changes around smoothed path / duration

Aggregate ratios use means: LIN = VSL/VCL, STR = VSL/VAP, WOB = VAP/VCL.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .common import (
    InputValidationError,
    TrackRecord,
    clamp_ratio,
    lateral_offsets,
    path_length,
    smooth_path,
)
from .common.math_utils import count_sign_changes

logger = logging.getLogger(__name__)


@dataclass
class AnalysisConfig:
    smoothing_window: int = 3  # +/- points around each sample

    motility_vcl_threshold: float = 20.0  # um/s
    progressive_vsl_threshold: float = 25.0  # um/s
    progressive_linearity_threshold: float = 0.5  # VSL/VCL

    n_jobs: int = 1


@dataclass(frozen=True)
class TrackKinematics:
    track_id: int
    point_count: int
    duration: float
    vcl: float
    vsl: float
    vap: float
    alh: float
    alh_mean: float
    bcf: float
    lin: Optional[float]
    str_ratio: Optional[float]
    wob: Optional[float]
    motile: bool
    progressive: bool
    quality_score: float


@dataclass(frozen=True)
class CasaResult:
    track_count: int
    total_track_count: int
    excluded_track_count: int
    vcl: Optional[float] = None
    vsl: Optional[float] = None
    vap: Optional[float] = None
    alh: Optional[float] = None
    bcf: Optional[float] = None
    lin: Optional[float] = None
    str_ratio: Optional[float] = None
    wob: Optional[float] = None
    motility_percent: Optional[float] = None
    progressive_percent: Optional[float] = None
    non_progressive_percent: Optional[float] = None
    immotile_percent: Optional[float] = None
    quality_score: Optional[float] = None
    tracks: Tuple[TrackKinematics, ...] = field(default_factory=tuple)

    def to_dict(self, include_tracks: bool = True) -> Dict[str, Any]:
        """Plain JSON-serialisable record."""
        out = asdict(self)
        if include_tracks:
            out["tracks"] = [asdict(t) for t in self.tracks]
        else:
            out.pop("tracks")
        return out


def _track_arrays(record: TrackRecord) -> Tuple[np.ndarray, np.ndarray]:
    x = np.array([p.x for p in record.points], dtype=float)
    y = np.array([p.y for p in record.points], dtype=float)
    return x, y


def calculate_vcl(x: np.ndarray, y: np.ndarray, duration: float) -> float:
    """Curvilinear velocity (VCL)"""
    return path_length(x, y) / duration


def calculate_vsl(x: np.ndarray, y: np.ndarray, duration: float) -> float:
    """Straight-line velocity (VSL)"""
    return float(np.hypot(x[-1] - x[0], y[-1] - y[0])) / duration


def calculate_vap(qx: np.ndarray, qy: np.ndarray, duration: float) -> float:
    """Average-path velocity (VAP) from an already smoothed path."""
    return path_length(qx, qy) / duration


def calculate_alh(
    x: np.ndarray, y: np.ndarray, qx: np.ndarray, qy: np.ndarray
) -> Tuple[float, float]:
    """
    Lateral head displacement against the average path.

    Returns (ALHmax, ALHmean). Half-amplitude convention: the distance of a
    raw point to the nearest segment of the average path, not doubled.
    """
    distances, _ = lateral_offsets(x, y, qx, qy)
    if len(distances) == 0:
        return 0.0, 0.0
    return float(np.max(distances)), float(np.mean(distances))


def calculate_bcf(
    x: np.ndarray, y: np.ndarray, qx: np.ndarray, qy: np.ndarray, duration: float
) -> float:
    """Beat-cross frequency (Hz): raw path crossings of the average path."""
    _, signs = lateral_offsets(x, y, qx, qy)
    return count_sign_changes(signs) / duration


def analyze_track(
    record: TrackRecord, config: Optional[AnalysisConfig] = None
) -> Optional[TrackKinematics]:
    """
    Kinematics for one track, or None when the track cannot be analysed
    (fewer than two points or no elapsed time).
    """
    config = config or AnalysisConfig()
    if record.point_count < 2:
        return None
    duration = record.duration
    if not np.isfinite(duration) or duration <= 0:
        return None

    x, y = _track_arrays(record)
    qx, qy = smooth_path(x, y, config.smoothing_window)

    vcl = calculate_vcl(x, y, duration)
    vsl = calculate_vsl(x, y, duration)
    vap = calculate_vap(qx, qy, duration)
    alh, alh_mean = calculate_alh(x, y, qx, qy)
    bcf = calculate_bcf(x, y, qx, qy, duration)

    motile = vcl > config.motility_vcl_threshold
    linearity = vsl / vcl if vcl > 0 else 0.0
    progressive = (
        vsl > config.progressive_vsl_threshold
        and linearity > config.progressive_linearity_threshold
    )

    return TrackKinematics(
        track_id=record.track_id,
        point_count=record.point_count,
        duration=float(duration),
        vcl=float(vcl),
        vsl=float(vsl),
        vap=float(vap),
        alh=alh,
        alh_mean=alh_mean,
        bcf=float(bcf),
        lin=clamp_ratio(vsl, vcl),
        str_ratio=clamp_ratio(vsl, vap),
        wob=clamp_ratio(vap, vcl),
        motile=bool(motile),
        progressive=bool(progressive),
        quality_score=float(record.quality_score),
    )


def _percent(count: int, total: int) -> Optional[float]:
    if total <= 0:
        return None
    return 100.0 * count / total


def analyze_tracks(
    records: Sequence[TrackRecord],
    config: Optional[AnalysisConfig] = None,
    total_track_count: Optional[int] = None,
) -> CasaResult:
    """
    Aggregate CASA result over a set of tracks.

    ``total_track_count`` is the number of tracks ever detected (including
    those filtered out as noise); percentages use it as denominator. It
    defaults to ``len(records)``.
    """
    config = config or AnalysisConfig()
    records = list(records)
    total = len(records) if total_track_count is None else int(total_track_count)
    if total < len(records):
        raise InputValidationError(
            f"total_track_count ({total}) is smaller than the number of tracks ({len(records)})"
        )

    if config.n_jobs != 1 and len(records) > 1:
        analysed = Parallel(n_jobs=config.n_jobs)(
            delayed(analyze_track)(rec, config) for rec in records
        )
    else:
        analysed = [analyze_track(rec, config) for rec in records]

    tracks = tuple(k for k in analysed if k is not None)
    excluded = len(records) - len(tracks)
    if excluded:
        logger.debug("Excluded %d tracks with fewer than 2 points or zero duration", excluded)

    if not tracks:
        logger.info("No analysable tracks (%d records, %d detected)", len(records), total)
        return CasaResult(
            track_count=0,
            total_track_count=total,
            excluded_track_count=excluded,
        )

    vcl = float(np.mean([k.vcl for k in tracks]))
    vsl = float(np.mean([k.vsl for k in tracks]))
    vap = float(np.mean([k.vap for k in tracks]))

    motile = sum(k.motile for k in tracks)
    progressive = sum(k.progressive for k in tracks)
    motility_percent = _percent(motile, total)

    result = CasaResult(
        track_count=len(tracks),
        total_track_count=total,
        excluded_track_count=excluded,
        vcl=vcl,
        vsl=vsl,
        vap=vap,
        alh=float(np.mean([k.alh for k in tracks])),
        bcf=float(np.mean([k.bcf for k in tracks])),
        lin=clamp_ratio(vsl, vcl),
        str_ratio=clamp_ratio(vsl, vap),
        wob=clamp_ratio(vap, vcl),
        motility_percent=motility_percent,
        progressive_percent=_percent(progressive, total),
        non_progressive_percent=_percent(motile - progressive, total),
        immotile_percent=None if motility_percent is None else 100.0 - motility_percent,
        quality_score=float(np.mean([k.quality_score for k in tracks])),
        tracks=tracks,
    )

    logger.info(
        "Analysed %d tracks: VCL=%.2f VSL=%.2f VAP=%.2f um/s, motility=%.1f%%",
        result.track_count,
        vcl,
        vsl,
        vap,
        motility_percent,
    )
    return result


def results_dataframe(result: CasaResult) -> pd.DataFrame:
    """Per-track kinematics as a table, one row per analysed track."""
    columns = [f for f in TrackKinematics.__dataclass_fields__]
    return pd.DataFrame([asdict(k) for k in result.tracks], columns=columns)


def summary_dict(result: CasaResult) -> Dict[str, Any]:
    """Aggregate fields only, rounded for reports."""
    out = result.to_dict(include_tracks=False)
    return {k: round(v, 4) if isinstance(v, float) else v for k, v in out.items()}
