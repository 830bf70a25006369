"""Shared fixtures: seeded synthetic detections and tracks."""
import numpy as np
import pandas as pd
import pytest

from casa_tracker.core.common import TrackPoint, TrackRecord


FPS = 25.0
DT = 1.0 / FPS


def make_record(track_id, xs, ys, dt=DT, t0=0.0, quality_score=0.0):
    points = tuple(
        TrackPoint(float(x), float(y), t0 + i * dt, frame=i) for i, (x, y) in enumerate(zip(xs, ys))
    )
    return TrackRecord(track_id=track_id, points=points, quality_score=quality_score)


def random_walk(rng, n_points, start, step=1.5, drift=(2.0, 0.5)):
    steps = rng.normal(0.0, step, size=(n_points - 1, 2)) + np.asarray(drift)
    path = np.vstack([np.asarray(start, dtype=float), np.asarray(start) + np.cumsum(steps, axis=0)])
    return path[:, 0], path[:, 1]


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def random_walk_records(rng):
    """Three 30-point random-walk tracks at 25 fps, in microns."""
    records = []
    for track_id, start in enumerate([(0.0, 0.0), (200.0, 50.0), (400.0, 300.0)], start=1):
        xs, ys = random_walk(rng, 30, start)
        records.append(make_record(track_id, xs, ys))
    return records


@pytest.fixture
def swimmer_detections(rng):
    """Detections table for three well separated swimmers over 40 frames."""
    rows = []
    starts = [(50.0, 50.0), (300.0, 80.0), (150.0, 400.0)]
    velocities = [(3.0, 0.5), (-2.0, 2.0), (1.0, -3.0)]
    for frame in range(40):
        for (x0, y0), (vx, vy) in zip(starts, velocities):
            noise = rng.normal(0.0, 0.3, size=2)
            rows.append(
                {
                    "frame": frame,
                    "x": x0 + vx * frame + noise[0],
                    "y": y0 + vy * frame + noise[1],
                    "t": frame * DT,
                }
            )
    return pd.DataFrame(rows)
