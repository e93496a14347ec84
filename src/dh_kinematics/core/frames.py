"""Per-step snapshot of live joint geometry."""

from jax import Array
from flax import struct


@struct.dataclass
class JointFrameSnapshot:
    """World-space joint frames read from a scene chain for one control step.

    Snapshots are recomputed every step and never persisted.

    Attributes:
        origins: (N, 3) world-space origin of each joint frame.
        rotations: (N, 3, 3) world-space orientation of each joint frame.
        ee_position: (3,) world-space end-effector origin.
        ee_rotation: (3, 3) world-space end-effector orientation.
    """
    origins: Array
    rotations: Array
    ee_position: Array
    ee_rotation: Array

    @property
    def num_joints(self) -> int:
        return self.origins.shape[0]
