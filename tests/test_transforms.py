"""Tests for the transforms module."""

import hypothesis
import jax
import jax.numpy as jnp
import numpy as np
from hypothesis import given, settings
from hypothesis import strategies as st

import dh_kinematics  # noqa: F401  (enables 64-bit mode)
from dh_kinematics.transforms import se3, so3

# Use hypothesis profile for CI
hypothesis.settings.register_profile("ci", max_examples=10, deadline=None)


# Quaternion conversions
def test_quaternion_to_matrix_identity():
    """Identity quaternion maps to the identity matrix."""
    matrix = so3.from_quaternion(jnp.array([1.0, 0.0, 0.0, 0.0]))
    np.testing.assert_allclose(matrix, jnp.eye(3), rtol=1e-6, atol=1e-6)


def test_matrix_to_quaternion_identity():
    """Identity matrix maps to the identity quaternion."""
    quat = so3.to_quaternion(jnp.eye(3))
    np.testing.assert_allclose(quat, jnp.array([1.0, 0.0, 0.0, 0.0]), rtol=1e-6, atol=1e-6)


def test_quaternion_to_matrix_jit():
    """from_quaternion works under JIT."""
    quat = jnp.array([0.7071068, 0.0, 0.7071068, 0.0])  # 90° around Y
    matrix = jax.jit(so3.from_quaternion)(quat)
    expected = jnp.array([[0.0, 0.0, 1.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0]])
    np.testing.assert_allclose(matrix, expected, rtol=1e-6, atol=1e-6)


def test_matrix_to_quaternion_jit():
    """to_quaternion works under JIT."""
    matrix = jnp.array([[0.0, 0.0, 1.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0]])
    quat = jax.jit(so3.to_quaternion)(matrix)
    np.testing.assert_allclose(quat, jnp.array([0.7071068, 0.0, 0.7071068, 0.0]), rtol=1e-6, atol=1e-6)


@given(st.integers(min_value=0, max_value=100))
@settings(deadline=None)
def test_quaternion_matrix_agree(seed):
    """to_quaternion recovers the rotation from_quaternion built (up to sign)."""
    key = jax.random.PRNGKey(seed)
    quat = jax.random.uniform(key, (4,), minval=-1.0, maxval=1.0)
    quat = quat / jnp.linalg.norm(quat)

    quat2 = so3.to_quaternion(so3.from_quaternion(quat))

    assert jnp.abs(jnp.sum(quat * quat2)) > 0.999


# SO(3) maps
def test_so3_exp_identity():
    """SO(3) exp of zero vector is the identity."""
    np.testing.assert_allclose(so3.exp(jnp.zeros(3)), jnp.eye(3), rtol=1e-6, atol=1e-6)


def test_so3_log_identity():
    """SO(3) log of the identity is the zero vector."""
    np.testing.assert_allclose(so3.log(jnp.eye(3)), jnp.zeros(3), rtol=1e-6, atol=1e-6)


def test_so3_exp_log_roundtrip():
    """SO(3) log inverts exp for a quarter turn."""
    axis_angle = jnp.array([0.0, 0.0, jnp.pi / 4])
    R = so3.exp(axis_angle)
    np.testing.assert_allclose(so3.log(R), axis_angle, rtol=1e-9, atol=1e-9)


def test_so3_log_small_angle():
    """SO(3) log stays accurate for tiny rotations."""
    axis_angle = jnp.array([1e-7, -2e-7, 3e-7])
    np.testing.assert_allclose(so3.log(so3.exp(axis_angle)), axis_angle, rtol=1e-6, atol=1e-14)


def test_so3_log_half_turn():
    """SO(3) log of a half turn returns angle pi about the right axis."""
    R = so3.exp(jnp.array([0.0, jnp.pi, 0.0]))
    log_r = so3.log(R)
    assert jnp.isclose(jnp.linalg.norm(log_r), jnp.pi, atol=1e-9)
    np.testing.assert_allclose(jnp.abs(log_r / jnp.pi), jnp.array([0.0, 1.0, 0.0]), atol=1e-9)


def test_so3_batch_operations():
    """SO(3) exp/log handle batched inputs."""
    batch_size = 5
    axis_angles = jax.random.uniform(jax.random.PRNGKey(42), (batch_size, 3), minval=-1.0, maxval=1.0)

    R_batch = so3.exp(axis_angles)
    log_r_batch = so3.log(R_batch)

    assert R_batch.shape == (batch_size, 3, 3)
    assert log_r_batch.shape == (batch_size, 3)
    np.testing.assert_allclose(axis_angles, log_r_batch, rtol=1e-9, atol=1e-9)


def test_so3_inverse():
    """R @ inverse(R) is the identity."""
    R = so3.exp(jnp.array([0.1, 0.2, 0.3]))
    np.testing.assert_allclose(so3.multiply(R, so3.inverse(R)), jnp.eye(3), rtol=1e-6, atol=1e-6)


def test_so3_apply():
    """90° about z maps the x axis onto the y axis."""
    R = so3.exp(jnp.array([0.0, 0.0, jnp.pi / 2]))
    v_rotated = so3.apply(R, jnp.array([1.0, 0.0, 0.0]))
    np.testing.assert_allclose(v_rotated, jnp.array([0.0, 1.0, 0.0]), rtol=1e-6, atol=1e-6)


def test_so3_skew_symmetric():
    """Skew matrix matches the cross product."""
    v = jnp.array([1.0, 2.0, 3.0])
    K = so3.skew_symmetric(v)

    expected = jnp.array([[0.0, -3.0, 2.0], [3.0, 0.0, -1.0], [-2.0, 1.0, 0.0]])
    np.testing.assert_allclose(K, expected, rtol=1e-6, atol=1e-6)
    np.testing.assert_allclose(K @ jnp.array([0.5, -1.0, 2.0]), jnp.cross(v, jnp.array([0.5, -1.0, 2.0])))


def test_normalize_axis_falls_back_to_forward():
    """Near-zero axes become (0, 0, 1); others are normalized."""
    axes = jnp.array([[0.0, 0.0, 0.0], [0.0, 2.0, 0.0], [1e-4, 0.0, 0.0]])
    result = so3.normalize_axis(axes)
    np.testing.assert_allclose(result, jnp.array([[0.0, 0.0, 1.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]))


def test_from_axis_angle_unnormalized_axis():
    """from_axis_angle normalizes the axis before rotating."""
    R = so3.from_axis_angle(jnp.array([0.0, 0.0, 5.0]), jnp.pi / 2)
    np.testing.assert_allclose(R, so3.exp(jnp.array([0.0, 0.0, jnp.pi / 2])), atol=1e-12)


def test_rotation_between():
    """rotation_between maps a onto b, including the antiparallel case."""
    pairs = [
        (jnp.array([1.0, 0.0, 0.0]), jnp.array([0.0, 0.0, 1.0])),
        (jnp.array([0.0, 1.0, 0.0]), jnp.array([0.0, 0.0, 1.0])),
        (jnp.array([0.0, 0.0, -1.0]), jnp.array([0.0, 0.0, 1.0])),
        (jnp.array([0.0, 0.0, 1.0]), jnp.array([0.0, 0.0, 1.0])),
    ]
    for a, b in pairs:
        R = so3.rotation_between(a, b)
        np.testing.assert_allclose(R @ a, b, atol=1e-9)
        np.testing.assert_allclose(R @ R.T, jnp.eye(3), atol=1e-9)


# SE(3)
def test_se3_from_position_and_rotation():
    """SE(3) construction from position and rotation."""
    T = se3.from_position_and_rotation(jnp.array([1.0, 2.0, 3.0]), jnp.eye(3))

    expected = jnp.array([[1.0, 0.0, 0.0, 1.0], [0.0, 1.0, 0.0, 2.0], [0.0, 0.0, 1.0, 3.0], [0.0, 0.0, 0.0, 1.0]])
    np.testing.assert_allclose(T, expected, rtol=1e-6, atol=1e-6)


def test_transform_compose():
    """Composed transforms apply right to left."""
    t1 = se3.from_position_and_rotation(jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    R_z90 = so3.from_quaternion(jnp.array([0.7071068, 0.0, 0.0, 0.7071068]))
    t2 = se3.from_position_and_rotation(jnp.array([0.0, 1.0, 0.0]), R_z90)

    transformed = se3.apply(se3.multiply(t1, t2), jnp.array([1.0, 0.0, 0.0]))

    np.testing.assert_allclose(transformed, jnp.array([1.0, 2.0, 0.0]), rtol=1e-6, atol=1e-6)


@given(st.integers(min_value=0, max_value=100))
@settings(deadline=None)
def test_transform_inverse_property(seed):
    """Applying T then T^-1 returns the original points."""
    key1, key2, key3 = jax.random.split(jax.random.PRNGKey(seed), 3)

    position = jax.random.uniform(key1, (3,), minval=-5.0, maxval=5.0)
    quat = jax.random.uniform(key2, (4,), minval=-1.0, maxval=1.0)
    T = se3.from_position_and_quaternion(position, quat / jnp.linalg.norm(quat))
    points = jax.random.uniform(key3, (10, 3), minval=-10.0, maxval=10.0)

    back = se3.apply(se3.inverse(T), se3.apply(T, points))

    np.testing.assert_allclose(back, points, rtol=1e-9, atol=1e-9)


def test_se3_apply_vector_ignores_translation():
    """apply_vector rotates but does not translate."""
    T = se3.from_position_and_rotation(jnp.array([1.0, 2.0, 3.0]), so3.exp(jnp.array([0.0, 0.0, jnp.pi / 2])))
    np.testing.assert_allclose(se3.apply_vector(T, jnp.array([1.0, 0.0, 0.0])), jnp.array([0.0, 1.0, 0.0]), atol=1e-12)


def test_se3_get_position_rotation():
    """Position, rotation and Z axis extraction."""
    p = jnp.array([1.0, 2.0, 3.0])
    R = so3.exp(jnp.array([0.1, 0.2, 0.3]))
    T = se3.from_position_and_rotation(p, R)

    np.testing.assert_allclose(se3.get_position(T), p, rtol=1e-6, atol=1e-6)
    np.testing.assert_allclose(se3.get_rotation(T), R, rtol=1e-6, atol=1e-6)
    np.testing.assert_allclose(se3.get_z_axis(T), R[:, 2], rtol=1e-6, atol=1e-6)
