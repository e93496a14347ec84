"""
DH Kinematics: Denavit-Hartenberg manipulator kinematics and control.

This library provides JIT-compilable forward kinematics, geometric Jacobians,
a damped least-squares resolved-rate controller, joint calibration
bookkeeping and Horn's absolute-orientation solver, all built on JAX.
"""

import jax
jax.config.update("jax_enable_x64", True)

# Import core modules
from . import transforms
from . import core
from . import io
from .chain import forward_kinematics, forward_kinematics_frames
from .jacobian import DHFrameSource, SnapshotFrameSource, geometric_jacobian
from .ik import IKStepResult
from .pose_solver import RigidPoseEstimate, solve_rigid_pose
from .plane_tracker import PlanePoseTracker
from .robot import DhRobot
from .scene import SceneChain, SimulatedChain

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "io",
    "forward_kinematics",
    "forward_kinematics_frames",
    "DHFrameSource",
    "SnapshotFrameSource",
    "geometric_jacobian",
    "IKStepResult",
    "RigidPoseEstimate",
    "solve_rigid_pose",
    "PlanePoseTracker",
    "DhRobot",
    "SceneChain",
    "SimulatedChain",
]
