"""Rigid pose from point correspondences (Horn's absolute orientation).

Given reference points P0 and current points P, find the rotation R and
translation t minimizing sum_i w_i |R p0_i + t - p_i|^2. The optimal rotation
is the dominant eigenvector of Davenport's symmetric 4x4 matrix N, recovered
here by power iteration from the identity quaternion.

Known limitation: near-collinear point sets, and rotations close to 180
degrees (quaternion nearly orthogonal to the identity start vector), converge
slowly or not at all within the given iteration count.
"""

from functools import partial
from typing import Optional, Sequence

import jax
import jax.numpy as jnp
from jax import Array
from flax import struct

from .transforms import se3, so3

DEFAULT_ITERATIONS = 20


@struct.dataclass
class RigidPoseEstimate:
    """Result of a rigid pose solve.

    Attributes:
        rotation: (4,) unit quaternion (w, x, y, z) mapping P0 onto P.
        translation: (3,) translation applied after the rotation.
        rms_error: Weighted RMS distance between R p0 + t and p.
    """
    rotation: Array
    translation: Array
    rms_error: Array

    @property
    def rotation_matrix(self) -> Array:
        return so3.from_quaternion(self.rotation)

    @property
    def transform(self) -> Array:
        """(4, 4) homogeneous transform of the estimated pose."""
        return se3.from_position_and_quaternion(self.translation, self.rotation)

    def apply(self, points: Array) -> Array:
        """Map reference points (N, 3) or (3,) through the estimated pose."""
        return se3.apply(self.transform, jnp.asarray(points, dtype=jnp.float64))


def davenport_matrix(S: Array) -> Array:
    """Symmetric 4x4 matrix whose top eigenvector is the optimal quaternion.

    Args:
        S: (3, 3) cross-covariance, S[j, k] = sum_i w_i a_i[j] b_i[k] with a
           the centered reference points and b the centered current points.
    """
    Sxx, Sxy, Sxz = S[0, 0], S[0, 1], S[0, 2]
    Syx, Syy, Syz = S[1, 0], S[1, 1], S[1, 2]
    Szx, Szy, Szz = S[2, 0], S[2, 1], S[2, 2]

    return jnp.array([
        [Sxx + Syy + Szz, Syz - Szy, Szx - Sxz, Sxy - Syx],
        [Syz - Szy, Sxx - Syy - Szz, Sxy + Syx, Szx + Sxz],
        [Szx - Sxz, Sxy + Syx, -Sxx + Syy - Szz, Szy + Syz],
        [Sxy - Syx, Szx + Sxz, Szy + Syz, -Sxx - Syy + Szz],
    ])


@partial(jax.jit, static_argnames=("iterations",))
def _solve(P0: Array, P: Array, w: Array, iterations: int):
    W = jnp.sum(w)
    c0 = jnp.sum(w[:, None] * P0, axis=0) / W
    c = jnp.sum(w[:, None] * P, axis=0) / W
    A = P0 - c0
    B = P - c

    S = jnp.einsum("i,ij,ik->jk", w, A, B)
    N = davenport_matrix(S)

    # Shift by an upper bound of |lambda| so that every eigenvalue is
    # non-negative and the largest one also dominates in magnitude.
    shift = jnp.sqrt(jnp.sum(w * jnp.sum(A * A, axis=1)) * jnp.sum(w * jnp.sum(B * B, axis=1)))
    N_shifted = N + shift * jnp.eye(4)

    def power_step(_, q):
        r = N_shifted @ q
        return r / (jnp.linalg.norm(r) + 1e-12)

    q = jax.lax.fori_loop(0, iterations, power_step, jnp.array([1.0, 0.0, 0.0, 0.0]))
    q = q / jnp.linalg.norm(q)

    R = so3.from_quaternion(q)
    t = c - R @ c0

    residual = P0 @ R.T + t - P
    rms = jnp.sqrt(jnp.sum(w * jnp.sum(residual * residual, axis=1)) / jnp.maximum(W, 1e-6))
    return q, t, rms


def solve_rigid_pose(
    P0: Sequence[Sequence[float]],
    P: Sequence[Sequence[float]],
    weights: Optional[Sequence[float]] = None,
    iterations: int = DEFAULT_ITERATIONS,
) -> RigidPoseEstimate:
    """Least-squares rigid transform with P[i] ~ R P0[i] + t.

    Args:
        P0: (N, 3) reference points
        P: (N, 3) current points
        weights: Optional (N,) per-point weights; negative values count as 0.
                 All ones when omitted.
        iterations: Power-iteration count

    Returns:
        RigidPoseEstimate with the rotation as a (w, x, y, z) quaternion.

    Raises:
        ValueError: if the point sets differ in length, have fewer than 3
                    points, are not (N, 3), or the weights sum to <= 0.
    """
    P0 = jnp.asarray(P0, dtype=jnp.float64)
    P = jnp.asarray(P, dtype=jnp.float64)
    if P0.ndim != 2 or P0.shape[-1] != 3 or P.ndim != 2 or P.shape[-1] != 3:
        raise ValueError(f"Point sets must have shape (N, 3), got {P0.shape} and {P.shape}")
    if P0.shape[0] != P.shape[0]:
        raise ValueError(f"Point sets differ in length: {P0.shape[0]} vs {P.shape[0]}")
    if P0.shape[0] < 3:
        raise ValueError(f"Need at least 3 correspondences, got {P0.shape[0]}")

    n = P0.shape[0]
    if weights is None:
        w = jnp.ones(n)
    else:
        w = jnp.asarray(weights, dtype=jnp.float64)
        if w.shape != (n,):
            raise ValueError(f"weights must have shape ({n},), got {w.shape}")
        w = jnp.maximum(w, 0.0)
    if float(jnp.sum(w)) <= 0.0:
        raise ValueError("Sum of weights must be positive")
    if iterations < 1:
        raise ValueError(f"iterations must be >= 1, got {iterations}")

    q, t, rms = _solve(P0, P, w, int(iterations))
    return RigidPoseEstimate(rotation=q, translation=t, rms_error=rms)
