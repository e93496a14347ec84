"""SE(3) rigid body transforms as 4x4 homogeneous matrices in JAX.

All functions are pure, JIT-able, and operate on JAX arrays.
"""

import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Construct SE(3) transform from position and rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    p = jnp.asarray(p, dtype=jnp.float64)
    R = jnp.asarray(R, dtype=jnp.float64)
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))

    T = jnp.zeros(batch_shape + (4, 4), dtype=p.dtype)
    T = T.at[..., :3, :3].set(R)
    T = T.at[..., :3, 3].set(p)
    T = T.at[..., 3, 3].set(1.0)

    return T


def from_position_and_quaternion(p: Array, quat: Array) -> Array:
    """SE(3) transform from a position and a (w, x, y, z) quaternion."""
    return from_position_and_rotation(p, so3.from_quaternion(jnp.asarray(quat, dtype=jnp.float64)))


def multiply(T1: Array, T2: Array) -> Array:
    """Compose transforms, T1 @ T2 (apply T2 first)."""
    return jnp.matmul(T1, T2)


def inverse(T: Array) -> Array:
    """
    Compute inverse of SE(3) transformation matrix.

    Uses the block structure: T^-1 = [[R^T, -R^T @ t], [0, 1]]

    Args:
        T: (..., 4, 4) transformation matrix

    Returns:
        (..., 4, 4) inverse transformation matrix
    """
    R_inv = jnp.swapaxes(T[..., :3, :3], -1, -2)
    t_inv = -jnp.einsum("...ij,...j->...i", R_inv, T[..., :3, 3])
    return from_position_and_rotation(t_inv, R_inv)


def apply(T: Array, points: Array) -> Array:
    """
    Apply SE(3) transformation to points.

    Args:
        T: (..., 4, 4) transformation matrix
        points: (..., 3) or (N, 3) points to transform

    Returns:
        (..., 3) or (N, 3) transformed points
    """
    return so3.apply(T[..., :3, :3], points) + T[..., :3, 3]


def apply_vector(T: Array, v: Array) -> Array:
    """Rotate direction vector(s) by the rotation block of T, ignoring translation."""
    return so3.apply(T[..., :3, :3], v)


def get_position(T: Array) -> Array:
    """(..., 3) translation column of T."""
    return T[..., :3, 3]


def get_rotation(T: Array) -> Array:
    """(..., 3, 3) rotation block of T."""
    return T[..., :3, :3]


def get_z_axis(T: Array) -> Array:
    """(..., 3) third column of the rotation block (local Z axis in the parent frame)."""
    return T[..., :3, 2]
