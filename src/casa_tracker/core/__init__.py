"""
Core package for CASA tracking project.

Modules:
    kalman_track: Constant-velocity Kalman track for a single object
    assignment: Hungarian assignment for track-to-detection association
    tracker: Multi-object tracker and track lifecycle
    analysis: Kinematic (CASA) analysis of finalized tracks
    common: Shared utilities and data structures
"""

__all__ = ["common", "kalman_track", "assignment", "tracker", "analysis"]
