"""
Common package for CASA tracking project - provides shared utilities across all modules.

Submodules:
    data_structures: Detections, track points, track records and calibration
    validation: Boundary checks for detections, timestamps and cost matrices
    io: Detection and track table input/output
    math_utils: Mathematical algorithms and functions
"""

from .data_structures import Calibration, Detection, TrackPoint, TrackRecord
from .io import iter_detection_frames, load_detections, load_tracks
from .math_utils import (
    calculate_distances,
    clamp_ratio,
    lateral_offsets,
    path_length,
    smooth_path,
)
from .validation import InputValidationError

__all__ = [
    "Calibration",
    "Detection",
    "TrackPoint",
    "TrackRecord",
    "InputValidationError",
    "iter_detection_frames",
    "load_detections",
    "load_tracks",
    "calculate_distances",
    "clamp_ratio",
    "lateral_offsets",
    "path_length",
    "smooth_path",
]
