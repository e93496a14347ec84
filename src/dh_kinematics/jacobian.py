"""Geometric Jacobian computation.

The Jacobian is assembled from joint origins and axes supplied by a frame
source. Two sources exist: the analytic one re-derives frames from the DH
table, the live one reads them from a JointFrameSnapshot taken from a scene
chain. Both feed the same column formula:

    revolute:  [z x (o_e - o); z]
    prismatic: [z; 0]
"""

from typing import Protocol, Tuple

import jax
import jax.numpy as jnp
from jax import Array

from .chain import forward_kinematics_frames
from .core import DHModel, JointFrameSnapshot
from .transforms import se3, so3


class FrameSource(Protocol):
    """Supplies joint origins, joint axes and the end-effector origin."""

    joint_types: str

    def joint_origins_and_axes(self) -> Tuple[Array, Array, Array]:
        """Return (origins (N, 3), unit axes (N, 3), end-effector origin (3,))."""
        ...


class DHFrameSource:
    """Frames derived from the DH table, expressed in the robot base frame.

    Joint i moves about z_{i-1}, the local Z axis of T_0,i-1, located at the
    origin of that frame.
    """

    def __init__(self, model: DHModel, q: Array):
        self.model = model
        self.q = jnp.asarray(q, dtype=jnp.float64)
        self.joint_types = model.joint_types

    def joint_origins_and_axes(self) -> Tuple[Array, Array, Array]:
        frames = forward_kinematics_frames(self.model, self.q)
        origins = se3.get_position(frames[:-1])
        axes = se3.get_z_axis(frames[:-1])
        return origins, axes, se3.get_position(frames[-1])


class SnapshotFrameSource:
    """Frames read from live scene geometry, expressed in world coordinates.

    The world axis of joint i is its world rotation applied to the configured
    local axis; near-zero configured axes fall back to (0, 0, 1).
    """

    def __init__(self, snapshot: JointFrameSnapshot, joint_axes: Array, joint_types: str):
        if snapshot.num_joints != len(joint_types):
            raise ValueError(
                f"Snapshot has {snapshot.num_joints} joints, model has {len(joint_types)}"
            )
        self.snapshot = snapshot
        self.joint_axes = so3.normalize_axis(joint_axes)
        self.joint_types = joint_types

    def joint_origins_and_axes(self) -> Tuple[Array, Array, Array]:
        axes = jnp.einsum("nij,nj->ni", self.snapshot.rotations, self.joint_axes)
        return self.snapshot.origins, axes, self.snapshot.ee_position


@jax.jit
def _jacobian_columns(origins: Array, axes: Array, ee_origin: Array, revolute: Array) -> Array:
    linear_revolute = jnp.cross(axes, ee_origin[None, :] - origins)
    linear = jnp.where(revolute[:, None], linear_revolute, axes)
    angular = jnp.where(revolute[:, None], axes, 0.0)
    return jnp.concatenate([linear, angular], axis=-1).T


def geometric_jacobian(source: FrameSource, linear_only: bool = False) -> Array:
    """Compute the geometric Jacobian of the end-effector origin.

    Args:
        source: Frame source providing joint origins and axes
        linear_only: Return only the 3xN linear block when True

    Returns:
        6xN matrix [linear; angular], or 3xN when linear_only is set. Columns
        of prismatic joints have a zero angular block.
    """
    origins, axes, ee_origin = source.joint_origins_and_axes()
    revolute = jnp.array([t == "R" for t in source.joint_types])
    J = _jacobian_columns(origins, axes, ee_origin, revolute)
    return J[:3] if linear_only else J


def dh_jacobian(model: DHModel, q: Array, linear_only: bool = False) -> Array:
    """Analytic Jacobian in the base frame, straight from the DH table."""
    return geometric_jacobian(DHFrameSource(model, q), linear_only=linear_only)


def snapshot_jacobian(model: DHModel, snapshot: JointFrameSnapshot, linear_only: bool = False) -> Array:
    """Live-geometry Jacobian in world coordinates."""
    return geometric_jacobian(
        SnapshotFrameSource(snapshot, model.joint_axes, model.joint_types),
        linear_only=linear_only,
    )
