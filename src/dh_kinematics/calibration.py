"""Mapping between joint values and joint orientations in a scene chain.

A revolute joint's local rotation is its zero-reference rotation followed by
a rotation of q about the configured joint axis:

    local_rotation = zero_rotation @ Rot(axis, q)

`q_from_local_rotations` is the exact inverse for |q| < pi.
"""

import jax
import jax.numpy as jnp
from jax import Array

from .transforms import so3


@jax.jit
def _revolute_rotations(zero_rotations: Array, q: Array, joint_axes: Array) -> Array:
    axes = so3.normalize_axis(joint_axes)
    return so3.multiply(zero_rotations, so3.exp(axes * q[:, None]))


def joint_local_rotations(zero_rotations: Array, q: Array, joint_axes: Array, joint_types: str) -> Array:
    """Local rotation of every joint for joint values q.

    Args:
        zero_rotations: (N, 3, 3) zero-reference local rotations
        q: (N,) joint values
        joint_axes: (N, 3) configured local joint axes
        joint_types: String over {R, P}; prismatic joints keep their zero rotation

    Returns:
        (N, 3, 3) local rotations
    """
    revolute = jnp.array([t == "R" for t in joint_types])
    rotated = _revolute_rotations(zero_rotations, jnp.asarray(q, dtype=jnp.float64), joint_axes)
    return jnp.where(revolute[:, None, None], rotated, zero_rotations)


def joint_displacements(q: Array, joint_types: str) -> Array:
    """Sliding displacement along the local axis, q for prismatic joints and 0 otherwise."""
    prismatic = jnp.array([t == "P" for t in joint_types])
    return jnp.where(prismatic, jnp.asarray(q, dtype=jnp.float64), 0.0)


@jax.jit
def _revolute_angles(zero_rotations: Array, local_rotations: Array, joint_axes: Array) -> Array:
    axes = so3.normalize_axis(joint_axes)
    relative = so3.inverse(zero_rotations) @ local_rotations
    rotvec = so3.log(relative)
    angle = jnp.linalg.norm(rotvec, axis=-1)
    aligned = jnp.sum(rotvec * axes, axis=-1)
    signed = jnp.where(aligned < 0.0, -angle, angle)
    # Keep the result in (-pi, pi]
    return jnp.where(signed <= -jnp.pi, signed + 2.0 * jnp.pi, signed)


def q_from_local_rotations(
    zero_rotations: Array,
    local_rotations: Array,
    joint_axes: Array,
    joint_types: str,
    q_current: Array,
) -> Array:
    """Recover joint values from observed local rotations.

    For each revolute joint the rotation relative to its zero reference is
    converted to axis-angle; the angle is signed by the alignment of the
    recovered axis with the configured joint axis. Prismatic joints keep
    their current value.

    Returns:
        (N,) joint values, revolute entries in (-pi, pi]
    """
    revolute = jnp.array([t == "R" for t in joint_types])
    angles = _revolute_angles(zero_rotations, local_rotations, joint_axes)
    return jnp.where(revolute, angles, jnp.asarray(q_current, dtype=jnp.float64))
