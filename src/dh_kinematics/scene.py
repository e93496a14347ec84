"""Scene chain collaborators.

A scene chain owns the joint nodes that carry a robot's live geometry. The
robot writes joint orientations into it and reads world frames back from it
every control step. `SimulatedChain` is an in-memory chain of joint nodes
built from a DH model, for environments without a renderer.
"""

from typing import Optional, Protocol, Tuple

import jax
import jax.numpy as jnp
from jax import Array

from .chain import link_transforms
from .core import DHModel, JointFrameSnapshot
from .transforms import se3, so3


class SceneChain(Protocol):
    """Interface the robot expects from a scene graph holding its joints."""

    @property
    def num_joints(self) -> int:
        ...

    def read_joint_rotations(self) -> Array:
        """Current local rotation of every joint node, shape (N, 3, 3)."""
        ...

    def apply_joint_state(self, local_rotations: Array, displacements: Array) -> None:
        """Write local rotations (N, 3, 3) and sliding displacements (N,)."""
        ...

    def snapshot(self) -> JointFrameSnapshot:
        """World frames of all joints and the end effector."""
        ...

    def end_effector_pose(self) -> Tuple[Array, Array]:
        """World (position (3,), rotation (3, 3)) of the end effector."""
        ...


@jax.jit
def _world_frames(base, offsets, local_rotations, axes, displacements, ee_local):
    def scan_body(W_parent, node):
        offset, rotation, axis, displacement = node
        translation = offset + rotation @ axis * displacement
        W = W_parent @ se3.from_position_and_rotation(translation, rotation)
        return W, W

    W_last, frames = jax.lax.scan(
        scan_body, base, (offsets, local_rotations, axes, displacements)
    )
    return frames, W_last @ ee_local


class SimulatedChain:
    """In-memory chain of joint nodes.

    Node i sits at `offsets[i]` in its parent's frame (the base for node 0)
    with local rotation `local_rotations[i]`; prismatic joints additionally
    slide `displacements[i]` along their local axis. The end effector is a
    fixed child of the last node.
    """

    def __init__(
        self,
        offsets: Array,
        rest_rotations: Array,
        joint_axes: Array,
        ee_transform: Array,
        base_transform: Optional[Array] = None,
    ):
        self.offsets = jnp.asarray(offsets, dtype=jnp.float64)
        self.local_rotations = jnp.asarray(rest_rotations, dtype=jnp.float64)
        self.joint_axes = so3.normalize_axis(joint_axes)
        self.ee_transform = jnp.asarray(ee_transform, dtype=jnp.float64)
        self.base_transform = jnp.eye(4) if base_transform is None else jnp.asarray(base_transform, dtype=jnp.float64)
        self.displacements = jnp.zeros(self.offsets.shape[0])

        n = self.offsets.shape[0]
        if self.local_rotations.shape != (n, 3, 3) or self.joint_axes.shape != (n, 3):
            raise ValueError("offsets, rest_rotations and joint_axes must describe the same number of joints")

    @classmethod
    def from_model(cls, model: DHModel, base_transform: Optional[Array] = None) -> "SimulatedChain":
        """Build a chain whose geometry matches the DH model at q = 0.

        Node i carries frame T_0i (joint i moves about its Z axis), re-oriented
        by a constant rotation C_i so that the configured local joint axis maps
        onto that Z axis. Rotating node i about its local axis by q therefore
        reproduces the DH motion of joint i.
        """
        n = model.num_joints
        A = link_transforms(model, jnp.zeros(n))
        z = jnp.array([0.0, 0.0, 1.0])
        C = jnp.stack([so3.rotation_between(model.joint_axes[i], z) for i in range(n)])

        offsets = [jnp.zeros(3)]
        rotations = [C[0]]
        for i in range(1, n):
            parent_inv = so3.inverse(C[i - 1])
            offsets.append(parent_inv @ se3.get_position(A[i - 1]))
            rotations.append(parent_inv @ se3.get_rotation(A[i - 1]) @ C[i])

        last_inv = se3.from_position_and_rotation(jnp.zeros(3), so3.inverse(C[n - 1]))
        ee_transform = last_inv @ A[n - 1]

        return cls(
            offsets=jnp.stack(offsets),
            rest_rotations=jnp.stack(rotations),
            joint_axes=model.joint_axes,
            ee_transform=ee_transform,
            base_transform=base_transform,
        )

    @property
    def num_joints(self) -> int:
        return self.offsets.shape[0]

    def read_joint_rotations(self) -> Array:
        return self.local_rotations

    def apply_joint_state(self, local_rotations: Array, displacements: Array) -> None:
        local_rotations = jnp.asarray(local_rotations, dtype=jnp.float64)
        displacements = jnp.asarray(displacements, dtype=jnp.float64)
        if local_rotations.shape != self.local_rotations.shape or displacements.shape != self.displacements.shape:
            raise ValueError("Joint state does not match the chain's joint count")
        self.local_rotations = local_rotations
        self.displacements = displacements

    def set_local_rotation(self, index: int, rotation: Array) -> None:
        """Move a single joint node by hand, bypassing the robot."""
        self.local_rotations = self.local_rotations.at[index].set(jnp.asarray(rotation, dtype=jnp.float64))

    def world_transforms(self) -> Tuple[Array, Array]:
        """World transforms of all joint nodes (N, 4, 4) and of the end effector (4, 4)."""
        return _world_frames(
            self.base_transform,
            self.offsets,
            self.local_rotations,
            self.joint_axes,
            self.displacements,
            self.ee_transform,
        )

    def snapshot(self) -> JointFrameSnapshot:
        frames, ee = self.world_transforms()
        return JointFrameSnapshot(
            origins=se3.get_position(frames),
            rotations=se3.get_rotation(frames),
            ee_position=se3.get_position(ee),
            ee_rotation=se3.get_rotation(ee),
        )

    def end_effector_pose(self) -> Tuple[Array, Array]:
        _, ee = self.world_transforms()
        return se3.get_position(ee), se3.get_rotation(ee)
