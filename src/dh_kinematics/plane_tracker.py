"""Plane pose tracking from point-sensor hits.

The tracker is calibrated once from the current hit points, which become the
reference set P0 and define an orthonormal basis of the reference plane.
Each later update solves the rigid pose from P0 to the current hits and
reports roll/pitch/yaw relative to that basis. It also reports the part of
the translation that is not explained by an expected advance along a
nominal x axis.
"""

import logging
from typing import Optional, Sequence

import jax.numpy as jnp
from jax import Array

from .pose_solver import RigidPoseEstimate, solve_rigid_pose

logger = logging.getLogger(__name__)

NORMAL_EPS = 1e-12


def _unit(v: Array) -> Array:
    return v / jnp.linalg.norm(v)


def _project_on_plane(v: Array, normal: Array) -> Array:
    return v - jnp.dot(v, normal) * normal


class PlanePoseTracker:
    """Track the pose of a plane sampled by a fixed set of point sensors.

    Args:
        num_sensors: Number of sensor slots (at least 3).
        require_all_hits: Skip updates unless every sensor reports a hit.
        max_rms_for_ok: RMS residual above which an update is flagged.
        expected_x_axis: Nominal advance direction.
        scene_offset: Offset subtracted from the solved translation.
        iterations: Power-iteration count for the pose solve.
    """

    def __init__(
        self,
        num_sensors: int = 4,
        require_all_hits: bool = True,
        max_rms_for_ok: float = 0.2,
        expected_x_axis: Sequence[float] = (1.0, 0.0, 0.0),
        scene_offset: Sequence[float] = (0.0, 0.0, 0.0),
        iterations: int = 25,
    ):
        if num_sensors < 3:
            raise ValueError(f"PlanePoseTracker needs at least 3 sensors, got {num_sensors}")
        self.num_sensors = num_sensors
        self.require_all_hits = require_all_hits
        self.max_rms_for_ok = max_rms_for_ok
        self.expected_x_axis = _unit(jnp.asarray(expected_x_axis, dtype=jnp.float64))
        self.scene_offset = jnp.asarray(scene_offset, dtype=jnp.float64)
        self.iterations = iterations

        self.expected_advance_x = 0.0
        self.calibrated = False
        self.P0: Optional[Array] = None
        self._present: Sequence[int] = ()
        self.ex0: Optional[Array] = None
        self.ey0: Optional[Array] = None
        self.ez0: Optional[Array] = None

        self.estimate: Optional[RigidPoseEstimate] = None
        self.translation = jnp.zeros(3)
        self.euler_rpy = jnp.zeros(3)
        self.unexpected_translation = jnp.zeros(3)
        self.rms_ok = True

    def _collect(self, hits: Sequence[Optional[Sequence[float]]]):
        if len(hits) != self.num_sensors:
            raise ValueError(f"Expected {self.num_sensors} sensor readings, got {len(hits)}")
        present = [i for i, h in enumerate(hits) if h is not None]
        return present, [jnp.asarray(hits[i], dtype=jnp.float64) for i in present]

    def calibrate(self, hits: Sequence[Optional[Sequence[float]]]) -> bool:
        """Use the current hits as the reference plane.

        Args:
            hits: One (3,) point per sensor, None for sensors without a hit.

        Returns:
            True on success. With too few hits, or if the points do not span
            a plane, the tracker stays uncalibrated.
        """
        present, points = self._collect(hits)
        if len(points) < 3:
            logger.warning("Plane calibration needs at least 3 hits, got %d", len(points))
            return False
        if len(points) < self.num_sensors and self.require_all_hits:
            logger.warning("Plane calibration needs all %d sensors to hit", self.num_sensors)
            return False

        P0 = jnp.stack(points)
        v01 = P0[1] - P0[0]
        v02 = P0[2] - P0[0]
        n_a = jnp.cross(v01, v02)
        if P0.shape[0] > 3:
            n_b = jnp.cross(v02, P0[3] - P0[1])
        else:
            n_b = jnp.zeros(3)

        normal = n_a + n_b
        if float(jnp.dot(normal, normal)) < NORMAL_EPS:
            normal = n_a
        if float(jnp.dot(normal, normal)) < NORMAL_EPS:
            logger.warning("Plane calibration aborted: sensor hits are collinear")
            return False

        ez0 = _unit(normal)
        ex_in_plane = _project_on_plane(v01, ez0)
        if float(jnp.dot(ex_in_plane, ex_in_plane)) < NORMAL_EPS:
            logger.warning("Plane calibration aborted: first two hits coincide")
            return False

        self.P0 = P0
        self._present = present
        self.ez0 = ez0
        self.ex0 = _unit(ex_in_plane)
        self.ey0 = _unit(jnp.cross(self.ez0, self.ex0))

        self.calibrated = True
        self.estimate = None
        self.translation = jnp.zeros(3)
        self.euler_rpy = jnp.zeros(3)
        self.unexpected_translation = jnp.zeros(3)
        self.expected_advance_x = 0.0
        return True

    def set_expected_advance_x(self, value: float) -> None:
        self.expected_advance_x = float(value)

    def update(self, hits: Sequence[Optional[Sequence[float]]]) -> Optional[RigidPoseEstimate]:
        """Solve the plane pose for the current hits.

        Returns:
            The pose estimate, or None when the tracker is not calibrated or
            too few sensors hit (nothing is updated in that case).
        """
        present, points = self._collect(hits)
        if len(points) < 3 or (self.require_all_hits and len(points) < self.num_sensors):
            return None
        if not self.calibrated:
            return None
        if present != self._present:
            logger.debug("Sensor hit pattern differs from calibration; skipping update")
            return None

        estimate = solve_rigid_pose(self.P0, jnp.stack(points), iterations=self.iterations)
        R = estimate.rotation_matrix
        self.estimate = estimate
        self.translation = estimate.translation - self.scene_offset

        ex = R @ self.ex0
        ez = R @ self.ez0

        pitch = jnp.degrees(jnp.arcsin(jnp.clip(jnp.dot(ez, self.ex0), -1.0, 1.0)))
        roll = -jnp.degrees(jnp.arcsin(jnp.clip(jnp.dot(ez, self.ey0), -1.0, 1.0)))
        ex_proj = _project_on_plane(ex, self.ez0)
        yaw = jnp.degrees(jnp.arctan2(jnp.dot(ex_proj, self.ey0), jnp.dot(ex_proj, self.ex0)))
        self.euler_rpy = jnp.stack([roll, pitch, yaw])

        nominal = self.expected_x_axis * self.expected_advance_x
        dT = self.translation - nominal
        self.unexpected_translation = dT - jnp.dot(dT, self.expected_x_axis) * self.expected_x_axis

        self.rms_ok = float(estimate.rms_error) <= self.max_rms_for_ok
        if not self.rms_ok:
            logger.warning("Plane pose RMS %.4f above threshold %.4f", float(estimate.rms_error), self.max_rms_for_ok)
        return estimate
