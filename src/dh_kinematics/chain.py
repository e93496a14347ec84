"""Forward kinematics for DH chains.

This module implements the standard Denavit-Hartenberg link transform and the
forward recursion that composes it along the chain. Everything here is a pure
function of the model and the joint vector.
"""

import jax
import jax.numpy as jnp
from jax import Array

from .core import DHModel


def dh_transform(alpha: Array, a: Array, d: Array, theta: Array) -> Array:
    """Standard DH link transform A(alpha, a, d, theta).

    Row-major layout::

        [[ct, -st*ca,  st*sa, a*ct],
         [st,  ct*ca, -ct*sa, a*st],
         [ 0,     sa,     ca,    d],
         [ 0,      0,      0,    1]]

    Args:
        alpha, a, d, theta: scalars or arrays of matching shape (...)

    Returns:
        (..., 4, 4) homogeneous transform(s)
    """
    ca, sa = jnp.cos(alpha), jnp.sin(alpha)
    ct, st = jnp.cos(theta), jnp.sin(theta)
    zeros = jnp.zeros_like(ct)
    ones = jnp.ones_like(ct)

    return jnp.stack([
        jnp.stack([ct, -st * ca, st * sa, a * ct], axis=-1),
        jnp.stack([st, ct * ca, -ct * sa, a * st], axis=-1),
        jnp.stack([zeros, sa * ones, ca * ones, d * ones], axis=-1),
        jnp.stack([zeros, zeros, zeros, ones], axis=-1),
    ], axis=-2)


def joint_dh_parameters(model: DHModel, q: Array):
    """Effective (alpha, a, d, theta) per joint with q applied.

    Revolute joints add q to theta0, prismatic joints add q to d.
    """
    q = jnp.asarray(q, dtype=jnp.float64)
    revolute = model.revolute_mask
    theta = model.theta0 + jnp.where(revolute, q, 0.0)
    d = model.d + jnp.where(model.prismatic_mask, q, 0.0)
    return model.alpha, model.a, d, theta


def link_transforms(model: DHModel, q: Array) -> Array:
    """Per-joint transforms A_i, shape (N, 4, 4)."""
    alpha, a, d, theta = joint_dh_parameters(model, q)
    return dh_transform(alpha, a, d, theta)


def forward_kinematics_frames(model: DHModel, q: Array) -> Array:
    """Cumulative base-to-frame transforms T_0i for i = 0..N.

    Args:
        model: DHModel describing the chain
        q: Joint values of shape (N,)

    Returns:
        Array of shape (N + 1, 4, 4); entry 0 is the identity (base frame),
        entry i is T_0i, entry N is the base-to-end-effector transform.
    """
    A = link_transforms(model, q)

    def scan_body(T_prev, A_i):
        T_i = T_prev @ A_i
        return T_i, T_i

    identity = jnp.eye(4, dtype=A.dtype)
    _, frames = jax.lax.scan(scan_body, identity, A)

    return jnp.concatenate([identity[None], frames], axis=0)


def forward_kinematics(model: DHModel, q: Array) -> Array:
    """Compute the base-to-end-effector transform for joint values q.

    Args:
        model: DHModel describing the chain
        q: Joint values of shape (N,), radians for revolute joints and
           meters for prismatic joints

    Returns:
        (4, 4) homogeneous transform in the robot base frame
    """
    q = jnp.asarray(q, dtype=jnp.float64)
    if q.shape != (model.num_joints,):
        raise ValueError(f"q must have shape ({model.num_joints},), got {q.shape}")
    return forward_kinematics_frames(model, q)[-1]
