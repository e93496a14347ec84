"""Stateful DH robot: joint state, resolved-rate control and calibration.

`DhRobot` owns the joint-value vector q. It is mutated only by the control
steps, the calibration/home operations and `set_q`. When a scene chain is
attached every change of q is pushed out to it as joint orientations, and
the pose-tracking step reads its live geometry back from it.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

import jax.numpy as jnp
from jax import Array

from . import calibration, ik
from .chain import forward_kinematics
from .core import JointFrameSnapshot, RobotConfig
from .jacobian import dh_jacobian, snapshot_jacobian
from .scene import SceneChain
from .transforms import se3

logger = logging.getLogger(__name__)


class DhRobot:
    """Serial manipulator described by a DH table.

    Args:
        config: Static robot configuration (model, q0, home, base pose).
        scene: Optional scene chain holding the live joint nodes.
    """

    def __init__(self, config: RobotConfig, scene: Optional[SceneChain] = None):
        self.config = config
        self.model = config.model
        self.scene = scene
        self.base_transform = config.base_transform
        self.speed_scale = float(config.speed_scale)
        self.q0 = jnp.asarray(config.q0, dtype=jnp.float64)
        self.home_degrees = jnp.asarray(config.home_degrees, dtype=jnp.float64)
        self.home_q: Optional[Array] = None

        self._q: Optional[Array] = None
        self._zero_rotations: Optional[Array] = None
        self._initialized = False

        if scene is not None and scene.num_joints != self.model.num_joints:
            raise ValueError(
                f"Scene chain has {scene.num_joints} joints, model has {self.model.num_joints}"
            )

    # Initialization and joint state

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def dof(self) -> int:
        return self.model.num_joints

    @property
    def zero_rotations(self) -> Array:
        self.init()
        return self._zero_rotations

    def init(self) -> None:
        """Copy q0 into q, capture zero orientations and default home = q0.

        Calling it again once initialized does nothing.
        """
        if self._initialized:
            return

        n = self.dof
        self._q = self.q0
        if self.scene is not None:
            self._zero_rotations = jnp.asarray(self.scene.read_joint_rotations(), dtype=jnp.float64)
        else:
            self._zero_rotations = jnp.tile(jnp.eye(3), (n, 1, 1))

        if self.home_q is None or self.home_q.shape != (n,):
            self.home_q = self.q0

        self._initialized = True
        self.apply_joint_values_to_chain()

    def get_q(self) -> Array:
        self.init()
        return self._q

    def set_q(self, q: Sequence[float]) -> None:
        """Overwrite q and push it to the scene chain.

        Raises:
            ValueError: if len(q) differs from the number of joints; q is left untouched.
        """
        self.init()
        q = jnp.asarray(q, dtype=jnp.float64)
        if q.shape != (self.dof,):
            raise ValueError(f"DhRobot.set_q: expected {self.dof} joint values, got shape {q.shape}")
        self._q = q
        self.apply_joint_values_to_chain()

    # Scene chain interface

    def apply_joint_values_to_chain(self, q: Optional[Array] = None) -> None:
        """Write joint orientations (and prismatic displacements) for q to the scene chain."""
        if self.scene is None:
            return
        if q is None:
            q = self._q
        rotations = calibration.joint_local_rotations(
            self._zero_rotations, q, self.model.joint_axes, self.model.joint_types
        )
        displacements = calibration.joint_displacements(q, self.model.joint_types)
        self.scene.apply_joint_state(rotations, displacements)

    def read_joint_orientations(self) -> Optional[Array]:
        """Local rotations of the scene's joint nodes, or None without a scene."""
        if self.scene is None:
            logger.warning("DhRobot.read_joint_orientations: no scene chain attached")
            return None
        return self.scene.read_joint_rotations()

    def joint_frame_snapshot(self) -> Optional[JointFrameSnapshot]:
        if self.scene is None:
            return None
        return self.scene.snapshot()

    # Kinematics

    def forward_kinematics(self, q: Optional[Array] = None) -> Array:
        """Base-to-end-effector transform from the DH table (current q by default)."""
        if q is None:
            q = self.get_q()
        return forward_kinematics(self.model, q)

    def end_effector_pose(self) -> Tuple[Array, Array]:
        """World (position, rotation) of the end effector.

        Read from the scene chain when one is attached, otherwise derived from
        DH forward kinematics and the base transform.
        """
        self.init()
        if self.scene is not None:
            return self.scene.end_effector_pose()
        T = se3.multiply(self.base_transform, self.forward_kinematics())
        return se3.get_position(T), se3.get_rotation(T)

    def jacobian(self, live: bool = False, linear_only: bool = False) -> Optional[Array]:
        """Geometric Jacobian.

        Args:
            live: Use the scene chain's world frames instead of the DH table.
                  Returns None (with a warning) when no scene is attached.
            linear_only: Return the 3xN linear block only.
        """
        self.init()
        if not live:
            return dh_jacobian(self.model, self._q, linear_only=linear_only)
        snapshot = self.joint_frame_snapshot()
        if snapshot is None:
            logger.warning("DhRobot.jacobian: live Jacobian requested without a scene chain")
            return None
        return snapshot_jacobian(self.model, snapshot, linear_only=linear_only)

    # Resolved-rate control

    def _integrate(self, result: ik.IKStepResult, scale: float) -> ik.IKStepResult:
        dq = result.dq * scale
        self._q = self._q + dq
        self.apply_joint_values_to_chain()
        if result.degenerate:
            logger.warning("Near-singular damped least-squares system; zero joint step applied")
        if result.clamped:
            logger.debug("Joint step clamped to %.1f deg", math.degrees(ik.MAX_JOINT_STEP))
        logger.debug("IK step error norm %.6g", result.error_norm)
        return result.replace(dq=dq)

    def step_resolved_rate_to_pose(
        self,
        target_position: Array,
        target_rotation: Array,
        pos_gain: float,
        rot_gain: float,
        dt: float,
        damping: float = ik.DEFAULT_DAMPING,
    ) -> Optional[ik.IKStepResult]:
        """One resolved-rate step toward a world-space target pose.

        Uses the live Jacobian from the scene chain. q += clamp(dq) * dt * speed_scale.

        Args:
            target_position: (3,) target position in world coordinates
            target_rotation: (3, 3) rotation matrix or (w, x, y, z) quaternion
            pos_gain, rot_gain: Gains on the position and orientation errors
            dt: Control period in seconds
            damping: Damping factor lambda

        Returns:
            IKStepResult, or None when the step could not run (no scene chain
            or no target).
        """
        self.init()
        if target_position is None or target_rotation is None:
            logger.warning("DhRobot.step_resolved_rate_to_pose: no target given")
            return None
        snapshot = self.joint_frame_snapshot()
        if snapshot is None:
            logger.warning("DhRobot.step_resolved_rate_to_pose: no scene chain attached")
            return None

        e_p, e_r = ik.pose_error(
            snapshot.ee_position,
            snapshot.ee_rotation,
            jnp.asarray(target_position, dtype=jnp.float64),
            ik.as_rotation_matrix(target_rotation),
        )
        J = snapshot_jacobian(self.model, snapshot)
        result = ik.pose_step(J, e_p, e_r, pos_gain, rot_gain, damping)
        return self._integrate(result, dt * max(self.speed_scale, 0.0))

    def step_resolved_rate_to_position(
        self,
        target_position: Array,
        gain: float,
        dt: float,
        damping: float = ik.DEFAULT_DAMPING,
    ) -> Optional[ik.IKStepResult]:
        """Position-only resolved-rate step using the 3xN linear Jacobian.

        Live geometry is used when a scene chain is attached, otherwise the DH
        frames mapped to world by the base transform.
        """
        self.init()
        target_position = jnp.asarray(target_position, dtype=jnp.float64)
        if target_position.shape != (3,):
            raise ValueError(f"target_position must have shape (3,), got {target_position.shape}")

        snapshot = self.joint_frame_snapshot()
        if snapshot is not None:
            J = snapshot_jacobian(self.model, snapshot, linear_only=True)
            current = snapshot.ee_position
        else:
            J = se3.get_rotation(self.base_transform) @ dh_jacobian(self.model, self._q, linear_only=True)
            current, _ = self.end_effector_pose()

        result = ik.position_step(J, target_position - current, gain, damping)
        return self._integrate(result, dt * max(self.speed_scale, 0.0))

    def step_cartesian_twist(
        self,
        delta_position: Array,
        delta_rotation: Array,
        gain: float = 1.0,
        damping: float = ik.DEFAULT_DAMPING,
    ) -> ik.IKStepResult:
        """Jog the end effector by a world-space twist.

        The twist is rotated into the base frame and solved against the DH
        Jacobian; the joint delta is added to q directly, without dt.

        Args:
            delta_position: (3,) translation increment in world coordinates
            delta_rotation: (3,) axis-angle rotation increment in world coordinates
        """
        self.init()
        to_base = se3.inverse(self.base_transform)
        d_pos = se3.apply_vector(to_base, jnp.asarray(delta_position, dtype=jnp.float64))
        d_rot = se3.apply_vector(to_base, jnp.asarray(delta_rotation, dtype=jnp.float64))

        J = dh_jacobian(self.model, self._q)
        result = ik.twist_step(J, d_pos, d_rot, gain, damping)
        return self._integrate(result, 1.0)

    # Calibration and home

    def save_home_from_degrees(self, home_degrees: Optional[Sequence[float]] = None) -> None:
        """Set home from degrees (the stored home_degrees by default) and move there."""
        self.init()
        if home_degrees is not None:
            home_degrees = jnp.asarray(home_degrees, dtype=jnp.float64)
            if home_degrees.shape != (self.dof,):
                raise ValueError(f"home_degrees must have shape ({self.dof},), got {home_degrees.shape}")
            self.home_degrees = home_degrees

        self.home_q = jnp.radians(self.home_degrees)
        self._q = self.home_q
        self.apply_joint_values_to_chain()

    def save_home_from_current_q(self) -> None:
        """Make the configuration currently shown by the scene chain the new home."""
        self.init()
        self.sync_q_from_transforms()
        self.home_q = self._q
        self.home_degrees = jnp.degrees(self.home_q)

    def go_to_home(self) -> None:
        """Move to home.

        A missing or mismatched home is rebuilt from home_degrees, or from q0
        when all home degrees are zero.
        """
        self.init()
        if self.home_q is None or jnp.shape(self.home_q) != (self.dof,):
            degrees = self.home_degrees
            if degrees.shape == (self.dof,) and bool(jnp.any(jnp.abs(degrees) > 1e-4)):
                self.home_q = jnp.radians(degrees)
            else:
                self.home_q = self.q0

        self._q = jnp.asarray(self.home_q, dtype=jnp.float64)
        self.apply_joint_values_to_chain()

    def recalibrate_zero_from_current_transforms(self) -> None:
        """Make the chain's current joint orientations the new zero.

        q, q0, home and home_degrees are all reset to zero. This is an
        operator action, not part of the control loop.
        """
        self.init()
        n = self.dof
        if self.scene is not None:
            self._zero_rotations = jnp.asarray(self.scene.read_joint_rotations(), dtype=jnp.float64)
        else:
            logger.warning("DhRobot.recalibrate_zero_from_current_transforms: no scene chain attached")
            self._zero_rotations = jnp.tile(jnp.eye(3), (n, 1, 1))

        self._q = jnp.zeros(n)
        self.q0 = jnp.zeros(n)
        self.home_q = jnp.zeros(n)
        self.home_degrees = jnp.zeros(n)
        self.apply_joint_values_to_chain()

    def sync_q_from_transforms(self) -> None:
        """Recover q from the scene chain's joint orientations.

        Use after joints were moved by hand. Revolute values land in (-pi, pi].
        """
        self.init()
        if self.scene is None:
            logger.warning("DhRobot.sync_q_from_transforms: no scene chain attached")
            return
        self._q = calibration.q_from_local_rotations(
            self._zero_rotations,
            self.scene.read_joint_rotations(),
            self.model.joint_axes,
            self.model.joint_types,
            self._q,
        )
