"""Motion tracking and CASA kinematics for detected sperm heads."""

__version__ = "1.0.0"
