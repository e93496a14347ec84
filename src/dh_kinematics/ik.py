"""Resolved-rate inverse kinematics with damped least squares.

Each function here performs one local descent step: it turns a task-space
error into a joint delta through the Jacobian. Reaching a pose takes repeated
calls, one per control tick; deciding when to stop belongs to the caller.
"""

import math
from typing import Tuple

import jax
import jax.numpy as jnp
from jax import Array
from flax import struct

from .linalg import damped_least_squares
from .transforms import so3

# Per-step joint delta limit, 30 degrees
MAX_JOINT_STEP = math.radians(30.0)
DEFAULT_DAMPING = 1e-4


@struct.dataclass
class IKStepResult:
    """Diagnostics of one controller step.

    Attributes:
        dq: Joint delta added to q (after clamping and scaling).
        error_norm: Norm of the unweighted task error that drove the step.
        degenerate: True when the linear solve hit a near-zero pivot and the
                    zero step was substituted.
        clamped: True when at least one joint delta hit the per-step limit.
    """
    dq: Array
    error_norm: float = struct.field(pytree_node=False)
    degenerate: bool = struct.field(pytree_node=False)
    clamped: bool = struct.field(pytree_node=False)


def as_rotation_matrix(rotation: Array) -> Array:
    """Accept a (3, 3) rotation matrix or a (w, x, y, z) quaternion."""
    rotation = jnp.asarray(rotation, dtype=jnp.float64)
    if rotation.shape == (4,):
        return so3.from_quaternion(rotation)
    if rotation.shape != (3, 3):
        raise ValueError(f"rotation must be a (3, 3) matrix or (4,) quaternion, got {rotation.shape}")
    return rotation


def pose_error(
    current_position: Array,
    current_rotation: Array,
    target_position: Array,
    target_rotation: Array,
) -> Tuple[Array, Array]:
    """Positional and orientational error between two poses.

    Args:
        current_position: (3,) current end-effector position
        current_rotation: (3, 3) current end-effector orientation
        target_position: (3,) target position
        target_rotation: (3, 3) target orientation

    Returns:
        Tuple (e_p, e_r): e_p = target - current; e_r is the axis-angle
        vector of R_target @ R_current^T, angle in [0, pi]. Both are in the
        frame the inputs are given in.
    """
    e_p = jnp.asarray(target_position) - jnp.asarray(current_position)
    e_r = so3.log(jnp.asarray(target_rotation) @ so3.inverse(jnp.asarray(current_rotation)))
    return e_p, e_r


@jax.jit
def clamp_joint_step(dq: Array, limit: float = MAX_JOINT_STEP) -> Tuple[Array, Array]:
    """Clamp each |dq_i| to limit; also report whether anything was clamped."""
    clamped = jnp.any(jnp.abs(dq) > limit)
    return jnp.clip(dq, -limit, limit), clamped


def pose_step(
    J: Array,
    e_p: Array,
    e_r: Array,
    pos_gain: float,
    rot_gain: float,
    damping: float = DEFAULT_DAMPING,
    max_step: float = MAX_JOINT_STEP,
) -> IKStepResult:
    """Joint rate for a 6D pose error (before dt integration).

    Args:
        J: (6, N) Jacobian in the same frame as the errors
        e_p: (3,) positional error
        e_r: (3,) axis-angle orientational error
        pos_gain, rot_gain: Gains applied to the two error blocks
        damping: Damping factor lambda
        max_step: Per-joint clamp applied to the rate

    Returns:
        IKStepResult with the clamped rate in dq.
    """
    e = jnp.concatenate([pos_gain * e_p, rot_gain * e_r])
    dq, degenerate = damped_least_squares(J, e, damping)
    dq, clamped = clamp_joint_step(dq, max_step)
    error_norm = float(jnp.linalg.norm(jnp.concatenate([e_p, e_r])))
    return IKStepResult(dq=dq, error_norm=error_norm, degenerate=bool(degenerate), clamped=bool(clamped))


def position_step(
    J_linear: Array,
    e_p: Array,
    gain: float,
    damping: float = DEFAULT_DAMPING,
    max_step: float = MAX_JOINT_STEP,
) -> IKStepResult:
    """Joint rate for a 3D positional error using the 3xN linear Jacobian."""
    dq, degenerate = damped_least_squares(J_linear, gain * e_p, damping)
    dq, clamped = clamp_joint_step(dq, max_step)
    return IKStepResult(
        dq=dq,
        error_norm=float(jnp.linalg.norm(e_p)),
        degenerate=bool(degenerate),
        clamped=bool(clamped),
    )


def twist_step(
    J: Array,
    delta_position: Array,
    delta_rotation: Array,
    gain: float = 1.0,
    damping: float = DEFAULT_DAMPING,
) -> IKStepResult:
    """One-shot joint increment for a Cartesian twist.

    The twist must already be expressed in the Jacobian's frame. No clamp and
    no dt: the result is added to q as-is.
    """
    e = gain * jnp.concatenate([jnp.asarray(delta_position), jnp.asarray(delta_rotation)])
    dq, degenerate = damped_least_squares(J, e, damping)
    return IKStepResult(
        dq=dq,
        error_norm=float(jnp.linalg.norm(e)),
        degenerate=bool(degenerate),
        clamped=False,
    )
