"""SO(3) rotation utilities in JAX.

Rotations are 3x3 matrices; quaternions use the (w, x, y, z) convention.
All functions are pure and JIT-able.
"""

import jax
import jax.numpy as jnp

Array = jax.Array

# Configured axes shorter than this fall back to the forward axis.
AXIS_EPS = 1e-6
FORWARD_AXIS = (0.0, 0.0, 1.0)


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric (cross-product) matrix.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)

    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def exp(log_r: Array) -> Array:
    """
    SO(3) exponential map: axis-angle vector to rotation matrix (Rodrigues).

    Args:
        log_r: (..., 3) array of axis-angle vectors

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    angle = jnp.linalg.norm(log_r, axis=-1, keepdims=True)
    small_angle = angle < 1e-8

    # Taylor expansions near zero
    sin_over = jnp.where(small_angle, 1.0 - angle**2 / 6.0,
                         jnp.sin(angle) / jnp.where(small_angle, 1.0, angle))
    one_minus_cos_over = jnp.where(small_angle, 0.5 - angle**2 / 24.0,
                                   (1.0 - jnp.cos(angle)) / jnp.where(small_angle, 1.0, angle**2))

    K = skew_symmetric(log_r)
    I = jnp.broadcast_to(jnp.eye(3, dtype=log_r.dtype), log_r.shape[:-1] + (3, 3))

    return I + sin_over[..., None] * K + one_minus_cos_over[..., None] * jnp.matmul(K, K)


def log(R: Array) -> Array:
    """
    SO(3) logarithm map: rotation matrix to axis-angle vector.

    The returned angle lies in [0, pi], so the vector is the shortest
    rotation. Orientation errors for IK are computed with this map.

    Args:
        R: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 3) array of axis-angle vectors
    """
    skew_part = jnp.stack([
        R[..., 2, 1] - R[..., 1, 2],
        R[..., 0, 2] - R[..., 2, 0],
        R[..., 1, 0] - R[..., 0, 1]
    ], axis=-1)

    # sin and cos of the angle; atan2 keeps precision at both ends
    sin_angle = 0.5 * jnp.linalg.norm(skew_part, axis=-1)
    cos_angle = 0.5 * (jnp.trace(R, axis1=-2, axis2=-1) - 1.0)
    angle = jnp.arctan2(sin_angle, cos_angle)

    small_angle = angle < 1e-8
    near_pi = (sin_angle < 1e-6) & (cos_angle < 0.0)

    safe_sin = jnp.where(sin_angle > 1e-12, sin_angle, 1.0)
    scale = jnp.where(small_angle, 0.5 + angle**2 / 12.0, 0.5 * angle / safe_sin)
    w_general = scale[..., None] * skew_part

    # Near pi the skew part vanishes; take the axis from (R + I) / 2
    B = 0.5 * (R + jnp.eye(3, dtype=R.dtype))
    diag_vals = jnp.diagonal(B, axis1=-2, axis2=-1)
    max_idx = jnp.argmax(diag_vals, axis=-1)
    axis_pi = jnp.take_along_axis(B, max_idx[..., None, None], axis=-1)[..., 0]
    axis_pi = axis_pi / jnp.linalg.norm(axis_pi, axis=-1, keepdims=True)
    flip = jnp.sum(axis_pi * skew_part, axis=-1, keepdims=True) < 0.0
    axis_pi = jnp.where(flip, -axis_pi, axis_pi)

    return jnp.where(near_pi[..., None], angle[..., None] * axis_pi, w_general)


def multiply(R1: Array, R2: Array) -> Array:
    """Compose rotations, R1 @ R2."""
    return jnp.matmul(R1, R2)


def inverse(R: Array) -> Array:
    """Inverse of a rotation matrix (its transpose)."""
    return jnp.swapaxes(R, -1, -2)


def apply(R: Array, v: Array) -> Array:
    """
    Apply rotation to vector(s).

    Args:
        R: (..., 3, 3) rotation matrix
        v: (..., 3) or (..., N, 3) vector(s) to rotate

    Returns:
        (..., 3) or (..., N, 3) rotated vector(s)
    """
    if v.ndim == R.ndim - 1:
        return jnp.einsum('...ij,...j->...i', R, v)
    return jnp.einsum('...ij,...nj->...ni', R, v)


def from_axis_angle(axis: Array, angle: Array) -> Array:
    """
    Rotation of `angle` radians about `axis`.

    The axis is normalized here; callers pass configured joint axes as-is.

    Args:
        axis: (..., 3) rotation axis
        angle: (...) angle in radians

    Returns:
        (..., 3, 3) rotation matrices
    """
    axis = normalize_axis(axis)
    return exp(axis * jnp.asarray(angle)[..., None])


def normalize_axis(axis: Array) -> Array:
    """Unit axis, or the forward axis (0, 0, 1) when the input is near zero."""
    axis = jnp.asarray(axis, dtype=jnp.float64)
    sq_norm = jnp.sum(axis * axis, axis=-1, keepdims=True)
    degenerate = sq_norm < AXIS_EPS
    forward = jnp.broadcast_to(jnp.asarray(FORWARD_AXIS, dtype=axis.dtype), axis.shape)
    safe_norm = jnp.sqrt(jnp.where(degenerate, 1.0, sq_norm))
    return jnp.where(degenerate, forward, axis / safe_norm)


def from_quaternion(quaternions: Array) -> Array:
    """
    Convert quaternions to rotation matrices.

    Args:
        quaternions: (..., 4) array of quaternions in (w, x, y, z) format

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    quaternions = quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)
    w, x, y, z = jnp.moveaxis(quaternions, -1, 0)

    xx, yy, zz = x*x, y*y, z*z
    wx, wy, wz = w*x, w*y, w*z
    xy, xz, yz = x*y, x*z, y*z

    return jnp.stack([
        jnp.stack([1 - 2*(yy + zz), 2*(xy - wz), 2*(xz + wy)], axis=-1),
        jnp.stack([2*(xy + wz), 1 - 2*(xx + zz), 2*(yz - wx)], axis=-1),
        jnp.stack([2*(xz - wy), 2*(yz + wx), 1 - 2*(xx + yy)], axis=-1)
    ], axis=-2)


def to_quaternion(R: Array) -> Array:
    """
    Convert rotation matrices to unit quaternions (w, x, y, z) with w >= 0.

    Args:
        R: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 4) array of quaternions
    """
    w = log(R)
    angle = jnp.linalg.norm(w, axis=-1, keepdims=True)
    axis = w / jnp.where(angle > 1e-12, angle, 1.0)
    q = jnp.concatenate([jnp.cos(0.5 * angle), jnp.sin(0.5 * angle) * axis], axis=-1)
    return q / jnp.linalg.norm(q, axis=-1, keepdims=True)


def rotation_between(a: Array, b: Array) -> Array:
    """
    Shortest rotation taking direction a onto direction b.

    Antiparallel inputs rotate by pi about an axis perpendicular to a.

    Args:
        a: (3,) source direction
        b: (3,) target direction

    Returns:
        (3, 3) rotation matrix R with R @ a_hat == b_hat
    """
    a = normalize_axis(a)
    b = normalize_axis(b)
    cross = jnp.cross(a, b)
    sin_angle = jnp.linalg.norm(cross)
    cos_angle = jnp.dot(a, b)
    angle = jnp.arctan2(sin_angle, cos_angle)

    # Perpendicular fallback for the antiparallel case
    helper = jnp.where(jnp.abs(a[0]) < 0.9, jnp.array([1.0, 0.0, 0.0]), jnp.array([0.0, 1.0, 0.0]))
    perp = jnp.cross(a, helper)
    perp = perp / jnp.linalg.norm(perp)

    axis = jnp.where(sin_angle > 1e-9, cross / jnp.where(sin_angle > 1e-9, sin_angle, 1.0), perp)
    return exp(axis * angle)
