"""Core data structures for DH Kinematics.

This module provides the immutable structures describing a manipulator and
the per-step joint geometry snapshot.
"""

from .frames import JointFrameSnapshot
from .robot_model import DHModel, RobotConfig, default_six_axis_config

__all__ = ["DHModel", "RobotConfig", "JointFrameSnapshot", "default_six_axis_config"]
