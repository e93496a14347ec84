"""I/O utilities for loading robot descriptions.

This module provides functions for parsing robot description files into
RobotConfig structures.
"""

from .dh_parser import load_robot_config

__all__ = ["load_robot_config"]
