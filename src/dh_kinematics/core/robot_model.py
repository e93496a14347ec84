"""DHModel and RobotConfig PyTree data structures.

This module defines the immutable description of a serial manipulator in
standard Denavit-Hartenberg form, plus the static configuration a robot is
loaded with. Both are compatible with JAX transformations.
"""

import math
from typing import Optional, Sequence

import jax.numpy as jnp
from jax import Array
from flax import struct

from ..transforms import so3

JOINT_TYPES = ("R", "P")


@struct.dataclass
class DHModel:
    """Immutable PyTree representation of a DH kinematic chain.

    All per-joint arrays share the leading dimension N, the number of joints.

    Attributes:
        joint_types: String of length N over {"R", "P"} (revolute, prismatic).
                     Marked as a static field for JIT compilation.
        alpha: Array of shape (N,) with link twist angles in radians.
        a: Array of shape (N,) with link lengths.
        d: Array of shape (N,) with link offsets.
        theta0: Array of shape (N,) with fixed joint-angle offsets in radians.
        joint_axes: Array of shape (N, 3) with the rotation (or sliding) axis of
                    each joint, expressed in the joint's local frame. Near-zero
                    axes are replaced by (0, 0, 1) on construction.
    """
    joint_types: str = struct.field(pytree_node=False)
    alpha: Array
    a: Array
    d: Array
    theta0: Array
    joint_axes: Array

    @classmethod
    def create(
        cls,
        alpha: Sequence[float],
        a: Sequence[float],
        d: Sequence[float],
        theta0: Sequence[float],
        joint_types: Optional[str] = None,
        joint_axes: Optional[Sequence[Sequence[float]]] = None,
    ) -> "DHModel":
        """Validate and build a DHModel.

        Raises:
            ValueError: if the per-joint arrays disagree in length, the model
                        has no joints, or a joint type is not R or P.
        """
        n = len(theta0)
        if n == 0:
            raise ValueError("DH model needs at least one joint")
        for name, values in (("alpha", alpha), ("a", a), ("d", d)):
            if len(values) != n:
                raise ValueError(f"DH parameter '{name}' has length {len(values)}, expected {n}")

        if joint_types is None:
            joint_types = "R" * n
        joint_types = joint_types.upper()
        if len(joint_types) != n:
            raise ValueError(f"joint_types has length {len(joint_types)}, expected {n}")
        bad = [t for t in joint_types if t not in JOINT_TYPES]
        if bad:
            raise ValueError(f"Unknown joint type(s) {bad}; expected R or P")

        if joint_axes is None:
            axes = jnp.tile(jnp.array([0.0, 0.0, 1.0]), (n, 1))
        else:
            axes = jnp.asarray(joint_axes, dtype=jnp.float64)
            if axes.shape != (n, 3):
                raise ValueError(f"joint_axes must have shape ({n}, 3), got {axes.shape}")

        return cls(
            joint_types=joint_types,
            alpha=jnp.asarray(alpha, dtype=jnp.float64),
            a=jnp.asarray(a, dtype=jnp.float64),
            d=jnp.asarray(d, dtype=jnp.float64),
            theta0=jnp.asarray(theta0, dtype=jnp.float64),
            joint_axes=so3.normalize_axis(axes),
        )

    @property
    def num_joints(self) -> int:
        return len(self.joint_types)

    @property
    def revolute_mask(self) -> Array:
        """Boolean array of shape (N,), True for revolute joints."""
        return jnp.array([t == "R" for t in self.joint_types])

    @property
    def prismatic_mask(self) -> Array:
        """Boolean array of shape (N,), True for prismatic joints."""
        return jnp.array([t == "P" for t in self.joint_types])


@struct.dataclass
class RobotConfig:
    """Static configuration a robot is initialized from.

    Attributes:
        model: The DH kinematic model.
        q0: Initial joint vector of shape (N,), radians or meters.
        home_degrees: Home joint vector of shape (N,) in degrees.
        base_transform: (4, 4) world pose of the robot base.
        speed_scale: Multiplier applied to the integrated pose-tracking step.
        name: Robot name, static.
    """
    model: DHModel
    q0: Array
    home_degrees: Array
    base_transform: Array
    speed_scale: float = 1.0
    name: str = struct.field(pytree_node=False, default="robot")

    @classmethod
    def from_dh_table(
        cls,
        model: DHModel,
        q0: Optional[Sequence[float]] = None,
        home_degrees: Optional[Sequence[float]] = None,
        base_transform: Optional[Array] = None,
        speed_scale: float = 1.0,
        name: str = "robot",
    ) -> "RobotConfig":
        n = model.num_joints
        q0 = jnp.zeros(n) if q0 is None else jnp.asarray(q0, dtype=jnp.float64)
        home_degrees = jnp.zeros(n) if home_degrees is None else jnp.asarray(home_degrees, dtype=jnp.float64)
        if q0.shape != (n,):
            raise ValueError(f"q0 must have shape ({n},), got {q0.shape}")
        if home_degrees.shape != (n,):
            raise ValueError(f"home_degrees must have shape ({n},), got {home_degrees.shape}")
        if base_transform is None:
            base_transform = jnp.eye(4)
        base_transform = jnp.asarray(base_transform, dtype=jnp.float64)
        if base_transform.shape != (4, 4):
            raise ValueError(f"base_transform must have shape (4, 4), got {base_transform.shape}")
        return cls(
            model=model,
            q0=q0,
            home_degrees=home_degrees,
            base_transform=base_transform,
            speed_scale=float(speed_scale),
            name=name,
        )


def default_six_axis_config() -> RobotConfig:
    """The six-axis arm (RRRRRR) with its DH table and the joint axes of its mounted links."""
    half_pi = math.pi / 2.0
    model = DHModel.create(
        alpha=[-half_pi, 0.0, 0.0, half_pi, -half_pi, 0.0],
        a=[0.0, 0.575, 0.575, 0.0, 0.0, 0.0],
        d=[0.330, 0.0, 0.0, 0.275, 0.221, 0.196],
        theta0=[0.0, -half_pi, 0.0, half_pi, 0.0, 0.0],
        joint_types="RRRRRR",
        joint_axes=[
            [0.0, 1.0, 0.0],
            [0.0, 0.0, 1.0],
            [0.0, 0.0, 1.0],
            [0.0, 0.0, 1.0],
            [0.0, 1.0, 0.0],
            [0.0, 0.0, 1.0],
        ],
    )
    return RobotConfig.from_dh_table(model, name="six_axis_arm")
