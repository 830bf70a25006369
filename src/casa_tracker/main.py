#!/usr/bin/env python3
"""
CASA Tracking Pipeline - Main entry point for tracking and kinematic analysis.

Takes per-frame detections produced by an external detector (CSV with columns
frame, x, y and optionally t), links them into tracks and computes the CASA
motility summary for each input file.

Usage:
    casa-tracker detections.csv -o results/
    casa-tracker detections/ -o results/ --input-glob '*_det.csv' -r
    casa-tracker detections.csv -o results/ --params-file params.json --tracking-only
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from casa_tracker.core.analysis import (
    AnalysisConfig,
    analyze_tracks,
    results_dataframe,
    summary_dict,
)
from casa_tracker.core.common import Calibration, load_detections
from casa_tracker.core.common.io import tracks_from_dataframe
from casa_tracker.core.tracker import (
    TrackerConfig,
    run_tracking_with_config,
    tracks_to_dataframe,
)

SUPPORTED_SUFFIXES = {".csv", ".pkl"}

# ---------------------- Utilities ----------------------


def setup_logging(output_dir: Path, level: int = logging.INFO) -> None:
    """Configure logging to file and stdout."""
    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / "pipeline.log"

    # Clear existing handlers
    logger = logging.getLogger()
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)


def validate_input_path(
    input_path: Path, glob_pattern: Optional[str] = None, recursive: bool = False
) -> Tuple[bool, List[Path]]:
    """Return list of detection files to process (single file, directory, or glob)."""
    if glob_pattern:
        if not input_path.is_dir():
            logging.error("--input-glob can only be used with a directory input path")
            return False, []
        files = input_path.rglob(glob_pattern) if recursive else input_path.glob(glob_pattern)
        return True, sorted(f for f in files if f.suffix.lower() in SUPPORTED_SUFFIXES)

    if not input_path.exists():
        logging.error("Input path does not exist: %s", input_path)
        return False, []

    if input_path.is_file():
        if input_path.suffix.lower() not in SUPPORTED_SUFFIXES:
            logging.error("Unsupported input extension: %s", input_path.suffix)
            return False, []
        return True, [input_path]

    files: List[Path] = []
    for ext in sorted(SUPPORTED_SUFFIXES):
        pattern = f"*{ext}"
        files.extend(input_path.rglob(pattern) if recursive else input_path.glob(pattern))
    return True, sorted(files)


def safe_load_csv(path: Path, description: str) -> Optional[pd.DataFrame]:
    if path.exists():
        logging.info("Loading %s: %s", description, path.name)
        return pd.read_csv(path)
    logging.error("Missing %s: %s", description, path.name)
    return None


# ---------------------- Parameter parsing helpers ----------------------


def create_default_params() -> Dict[str, Dict[str, Any]]:
    """Return default params."""
    tracker = TrackerConfig()
    analysis = AnalysisConfig()
    return {
        # mapped into TrackerConfig
        "tracking": {
            "max_missed_frames": tracker.max_missed_frames,
            "max_match_distance": tracker.max_match_distance,
            "min_track_duration": tracker.min_track_duration,
            "min_track_points": tracker.min_track_points,
            "quality_reference_speed": tracker.quality_reference_speed,
            "process_noise_position": tracker.process_noise_position,
            "process_noise_velocity": tracker.process_noise_velocity,
            "measurement_noise": tracker.measurement_noise,
            "initial_covariance": tracker.initial_covariance,
        },
        "analysis": {
            "pixel_size": 0.5,
            "fps": 60.0,
            "smoothing_window": analysis.smoothing_window,
            "motility_vcl_threshold": analysis.motility_vcl_threshold,
            "progressive_vsl_threshold": analysis.progressive_vsl_threshold,
            "progressive_linearity_threshold": analysis.progressive_linearity_threshold,
            "n_jobs": analysis.n_jobs,
        },
    }


def load_configuration(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    """Load configuration from defaults and optional JSON params file."""
    params = create_default_params()

    if args.params_file:
        if not args.params_file.exists():
            logging.warning("Params file not found, using defaults: %s", args.params_file)
            return params
        with open(args.params_file, "r") as fh:
            loaded = json.load(fh)
        for key in ("tracking", "analysis"):
            if key in loaded:
                params[key].update(loaded[key])

    return params


def parse_tracker_config(
    args: argparse.Namespace, params: Optional[Dict[str, Any]] = None
) -> TrackerConfig:
    """Return tracker configuration with CLI overrides."""
    config = TrackerConfig()

    if params:
        for name, value in params.items():
            if hasattr(config, name):
                setattr(config, name, value)
            else:
                logging.warning("Ignoring unknown tracking parameter: %s", name)

    param_mappings = {
        "trk_max_missed_frames": "max_missed_frames",
        "trk_max_match_distance": "max_match_distance",
        "trk_min_track_duration": "min_track_duration",
        "trk_min_track_points": "min_track_points",
        "trk_quality_reference_speed": "quality_reference_speed",
    }
    for cli_arg, attr_name in param_mappings.items():
        if getattr(args, cli_arg, None) is not None:
            setattr(config, attr_name, getattr(args, cli_arg))

    return config


def parse_analysis_params(
    args: argparse.Namespace, defaults: Dict[str, Any]
) -> Dict[str, Any]:
    """Return analysis parameters with CLI overrides."""
    params = dict(defaults)

    param_mappings = {
        "pixel_size": "pixel_size",
        "fps": "fps",
        "smoothing_window": "smoothing_window",
        "ana_motility_vcl_threshold": "motility_vcl_threshold",
        "ana_progressive_vsl_threshold": "progressive_vsl_threshold",
        "ana_progressive_linearity_threshold": "progressive_linearity_threshold",
        "jobs": "n_jobs",
    }

    for cli_arg, param_name in param_mappings.items():
        if getattr(args, cli_arg, None) is not None:
            params[param_name] = getattr(args, cli_arg)

    return params


def build_analysis_config(analysis_params: Dict[str, Any]) -> Tuple[AnalysisConfig, Calibration]:
    """Split analysis params into the analyzer config and the calibration."""
    calibration = Calibration(
        microns_per_pixel=float(analysis_params["pixel_size"]),
        fps=float(analysis_params["fps"]),
    )
    config = AnalysisConfig(
        smoothing_window=int(analysis_params["smoothing_window"]),
        motility_vcl_threshold=float(analysis_params["motility_vcl_threshold"]),
        progressive_vsl_threshold=float(analysis_params["progressive_vsl_threshold"]),
        progressive_linearity_threshold=float(
            analysis_params["progressive_linearity_threshold"]
        ),
        n_jobs=int(analysis_params["n_jobs"]),
    )
    return config, calibration


# ---------------------- Main pipeline ----------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="CASA Tracking and Kinematics Pipeline")
    p.add_argument("input_path", type=Path, help="Detections file or directory")
    p.add_argument(
        "-o", "--output-dir", required=True, type=Path, help="Base output directory"
    )
    p.add_argument("--params-file", type=Path, help="Optional JSON params file")
    p.add_argument(
        "--input-glob",
        type=str,
        help="Glob pattern for input files (e.g., '*_det.csv')",
    )
    p.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="Recursively search input directory for files",
    )

    # ==================== Tracking Parameters ====================
    tracking_group = p.add_argument_group("Tracking Parameters")
    tracking_group.add_argument(
        "--trk-max-missed-frames",
        type=int,
        default=None,
        help="Consecutive frames a track may go unmatched before it is terminated",
    )
    tracking_group.add_argument(
        "--trk-max-match-distance",
        type=float,
        default=None,
        help="Maximum distance (pixels) between prediction and detection for a match",
    )
    tracking_group.add_argument(
        "--trk-min-track-duration",
        type=float,
        default=None,
        help="Minimum track duration (s) for export",
    )
    tracking_group.add_argument(
        "--trk-min-track-points",
        type=int,
        default=None,
        help="Minimum number of points for export",
    )
    tracking_group.add_argument(
        "--trk-quality-reference-speed",
        type=float,
        default=None,
        help="Mean speed (um/s) at which the track quality score saturates",
    )

    # ==================== Analysis Parameters ====================
    analysis_group = p.add_argument_group("Analysis Parameters")
    analysis_group.add_argument(
        "--pixel-size",
        type=float,
        default=None,
        help="Pixel size in micrometers (um/pixel)",
    )
    analysis_group.add_argument(
        "--fps",
        type=float,
        default=None,
        help="Recording frames per second, used when detections have no 't' column",
    )
    analysis_group.add_argument(
        "--smoothing-window",
        type=int,
        default=None,
        help="Average-path half window (points on each side)",
    )
    analysis_group.add_argument(
        "--ana-motility-vcl-threshold",
        type=float,
        default=None,
        help="VCL motility threshold (um/s)",
    )
    analysis_group.add_argument(
        "--ana-progressive-vsl-threshold",
        type=float,
        default=None,
        help="VSL progressive threshold (um/s)",
    )
    analysis_group.add_argument(
        "--ana-progressive-linearity-threshold",
        type=float,
        default=None,
        help="VSL/VCL progressive threshold",
    )
    analysis_group.add_argument(
        "--jobs",
        type=int,
        default=None,
        help="Parallel jobs for per-track analysis (1 = serial, -1 = all cores)",
    )

    # ==================== Control Flags ====================
    control_group = p.add_argument_group("Control Flags")
    control_group.add_argument(
        "--tracking-only",
        action="store_true",
        help="Run tracking only and write the tracks table",
    )
    control_group.add_argument(
        "--analysis-only",
        action="store_true",
        help="Run analysis only (requires an existing tracks table in the output folder)",
    )
    control_group.add_argument(
        "--verbose", action="store_true", help="Enable verbose logging"
    )

    return p


def run_tracking_phase(
    detections_df: pd.DataFrame,
    out_dir: Path,
    name: str,
    tracker_cfg: TrackerConfig,
    calibration: Calibration,
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """Run tracking, save the tracks table and return it with tracker statistics."""
    logging.info("Starting tracking on %d detections...", len(detections_df))

    def report_progress(frame_index: int, timestamp: float, total_frames: Optional[int]):
        if total_frames and (frame_index + 1) % 100 == 0:
            logging.debug("Tracking frame %d/%d (t=%.3fs)", frame_index + 1, total_frames, timestamp)

    tracker = run_tracking_with_config(
        detections_df, tracker_cfg, calibration, progress_callback=report_progress
    )
    stats = tracker.statistics()

    tracks_df = tracks_to_dataframe(tracker.export_tracks())
    tracks_csv = out_dir / f"{name}_trk_tracks.csv"
    tracks_df.to_csv(tracks_csv, index=False)
    logging.info(
        "Tracking saved: %s (%d valid of %d created)",
        tracks_csv.name,
        stats["valid_tracks"],
        stats["tracks_created"],
    )
    return tracks_df, stats


def run_analysis_phase(
    tracks_df: pd.DataFrame,
    out_dir: Path,
    name: str,
    analysis_cfg: AnalysisConfig,
    calibration: Calibration,
    total_track_count: Optional[int] = None,
) -> Dict[str, Any]:
    """Run analysis phase, save results and return the summary."""
    logging.info("Starting analysis...")

    records = [r.to_microns(calibration) for r in tracks_from_dataframe(tracks_df)]
    result = analyze_tracks(records, analysis_cfg, total_track_count=total_track_count)

    analysis_file = out_dir / f"{name}_ana_motility.csv"
    results_dataframe(result).to_csv(analysis_file, index=False)

    summary = summary_dict(result)
    with open(out_dir / f"{name}_ana_summary.json", "w") as fh:
        json.dump(summary, fh, indent=2)

    logging.info("Analysis saved: %s", analysis_file.name)
    return summary


def write_pipeline_summary(
    out_dir: Path,
    name: str,
    start_time: float,
    tracker_cfg: TrackerConfig,
    analysis_params: Dict[str, Any],
    tracking_stats: Optional[Dict[str, Any]] = None,
) -> None:
    """Write pipeline summary JSON file."""
    summary = {
        "input": name,
        "timestamp": datetime.now().isoformat(),
        "duration_seconds": time.time() - start_time,
        "params": {
            "tracking": tracker_cfg.__dict__,
            "analysis": analysis_params,
        },
        "tracking": tracking_stats,
    }
    with open(out_dir / f"{name}_pipeline_summary.json", "w") as fh:
        json.dump(summary, fh, indent=2)


def process_single_file(
    in_file: Path,
    args: argparse.Namespace,
    params: Dict[str, Dict[str, Any]],
    log_level: int,
    relative_path: Optional[Path] = None,
) -> bool:
    """Process a single detections file through tracking and analysis."""
    t0 = time.time()
    name = in_file.stem
    if relative_path:
        # Preserve relative directory structure
        out_dir = args.output_dir / relative_path.parent / name
    else:
        out_dir = args.output_dir / name

    setup_logging(out_dir, level=log_level)
    logging.info("Processing %s", in_file)

    try:
        tracker_cfg = parse_tracker_config(args, params["tracking"])
        analysis_params = parse_analysis_params(args, params["analysis"])
        analysis_cfg, calibration = build_analysis_config(analysis_params)

        tracking_stats = None
        total_track_count = None
        if args.analysis_only:
            tracks_df = safe_load_csv(out_dir / f"{name}_trk_tracks.csv", "tracks")
            if tracks_df is None:
                return False
        else:
            detections_df = load_detections(in_file)
            tracks_df, tracking_stats = run_tracking_phase(
                detections_df, out_dir, name, tracker_cfg, calibration
            )
            total_track_count = tracking_stats["tracks_created"]

        if not args.tracking_only:
            run_analysis_phase(
                tracks_df, out_dir, name, analysis_cfg, calibration, total_track_count
            )

        write_pipeline_summary(
            out_dir, name, t0, tracker_cfg, analysis_params, tracking_stats
        )
        logging.info("Processing complete: %s (%.2fs)", name, time.time() - t0)
        return True

    except Exception as e:
        logging.error("Processing failed for %s: %s", name, e)
        logging.error("Detailed error information:", exc_info=True)
        return False


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point for the CASA tracking pipeline."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    if args.tracking_only and args.analysis_only:
        parser.error("--tracking-only and --analysis-only are mutually exclusive")

    params = load_configuration(args)
    log_level = logging.DEBUG if args.verbose else logging.INFO

    is_valid, input_files = validate_input_path(
        args.input_path, args.input_glob, args.recursive
    )
    if not is_valid or not input_files:
        print("No input files found or invalid path.")
        sys.exit(1)

    success_count = 0
    for in_file in input_files:
        relative_path = None
        if args.input_path.is_dir():
            try:
                relative_path = in_file.relative_to(args.input_path)
            except ValueError:
                relative_path = Path(in_file.name)

        if process_single_file(in_file, args, params, log_level, relative_path):
            success_count += 1

    logging.info(
        "Pipeline completed: %d/%d files processed successfully",
        success_count,
        len(input_files),
    )
    if success_count < len(input_files):
        sys.exit(1)


if __name__ == "__main__":
    main()
