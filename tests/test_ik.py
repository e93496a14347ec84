"""Tests for the linear solver, IK steps and the resolved-rate controller."""

import logging
import math

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from dh_kinematics import ik
from dh_kinematics.core import RobotConfig, default_six_axis_config
from dh_kinematics.linalg import damped_least_squares, solve_linear_system
from dh_kinematics.robot import DhRobot
from dh_kinematics.scene import SimulatedChain
from dh_kinematics.transforms import se3, so3

# Bent-elbow start pose of the six-axis arm
Q_START = jnp.array([0.0, 0.3, -0.6, 0.0, 0.7, 0.0])
Q_OFFSET = jnp.array([0.25, -0.2, 0.3, 0.2, -0.25, 0.35])


def _scene_robot(config=None):
    config = config or default_six_axis_config()
    robot = DhRobot(config, SimulatedChain.from_model(config.model, config.base_transform))
    robot.init()
    return robot


def _rotated_base_config():
    base = se3.from_position_and_rotation(
        jnp.array([0.5, -0.2, 0.1]), so3.exp(jnp.array([0.0, 0.0, math.pi / 2]))
    )
    model = default_six_axis_config().model
    return RobotConfig.from_dh_table(model, base_transform=base)


# Linear algebra
def test_solve_linear_system_known():
    """Gauss-Jordan matches a hand-checked 3x3 system, including a row swap."""
    A = jnp.array([[0.0, 2.0, 1.0], [1.0, 1.0, 0.0], [2.0, 0.0, 3.0]])
    x_true = jnp.array([1.0, -2.0, 0.5])
    x, degenerate = solve_linear_system(A, A @ x_true)
    assert not bool(degenerate)
    np.testing.assert_allclose(x, x_true, atol=1e-12)


@given(st.integers(min_value=1, max_value=8), st.integers(min_value=0, max_value=100))
@settings(max_examples=25, deadline=None)
def test_solve_linear_system_any_size(n, seed):
    """The solver handles any square size."""
    key_a, key_b = jax.random.split(jax.random.PRNGKey(seed))
    A = jax.random.normal(key_a, (n, n)) + 3.0 * jnp.eye(n)
    b = jax.random.normal(key_b, (n,))
    x, degenerate = solve_linear_system(A, b)
    assert not bool(degenerate)
    np.testing.assert_allclose(A @ x, b, atol=1e-9)


def test_solve_linear_system_degenerate_returns_zero():
    """A singular matrix gives the zero vector and the degenerate flag."""
    A = jnp.array([[1.0, 2.0], [2.0, 4.0]])
    x, degenerate = solve_linear_system(A, jnp.array([1.0, 1.0]))
    assert bool(degenerate)
    np.testing.assert_array_equal(x, jnp.zeros(2))


def test_damped_least_squares_matches_closed_form():
    """dq = J^T (J J^T + lambda^2 I)^-1 e."""
    J = jax.random.normal(jax.random.PRNGKey(3), (6, 6))
    e = jax.random.normal(jax.random.PRNGKey(4), (6,))
    damping = 0.05
    dq, degenerate = damped_least_squares(J, e, damping)
    expected = J.T @ jnp.linalg.solve(J @ J.T + damping**2 * jnp.eye(6), e)
    assert not bool(degenerate)
    np.testing.assert_allclose(dq, expected, atol=1e-10)


def test_damped_least_squares_wide_jacobian():
    """A 3xN linear Jacobian gives an N-vector whose image is the error."""
    J = jax.random.normal(jax.random.PRNGKey(5), (3, 6))
    e = jnp.array([0.1, -0.2, 0.05])
    dq, _ = damped_least_squares(J, e, 1e-6)
    assert dq.shape == (6,)
    np.testing.assert_allclose(J @ dq, e, atol=1e-8)


# Step functions
def test_clamp_joint_step():
    """Each delta is clamped to 30 degrees independently."""
    limit = math.radians(30.0)
    dq, clamped = ik.clamp_joint_step(jnp.array([0.1, -2.0, 1.0, 0.0]))
    assert bool(clamped)
    np.testing.assert_allclose(dq, jnp.array([0.1, -limit, limit, 0.0]))

    dq, clamped = ik.clamp_joint_step(jnp.array([0.1, -0.2]))
    assert not bool(clamped)


def test_pose_error():
    """Position error is target - current; rotation error is log(R_t R_c^T)."""
    R_c = so3.exp(jnp.array([0.1, 0.0, 0.0]))
    R_t = so3.exp(jnp.array([0.0, 0.0, 0.4])) @ R_c
    e_p, e_r = ik.pose_error(jnp.array([1.0, 0.0, 0.0]), R_c, jnp.array([1.0, 2.0, -1.0]), R_t)
    np.testing.assert_allclose(e_p, jnp.array([0.0, 2.0, -1.0]))
    np.testing.assert_allclose(e_r, jnp.array([0.0, 0.0, 0.4]), atol=1e-12)


def test_as_rotation_matrix_accepts_quaternion():
    quat = jnp.array([math.cos(0.3), 0.0, math.sin(0.3), 0.0])
    np.testing.assert_allclose(ik.as_rotation_matrix(quat), so3.from_quaternion(quat))
    with pytest.raises(ValueError):
        ik.as_rotation_matrix(jnp.zeros(5))


def test_pose_step_degenerate():
    """A zero Jacobian without damping yields a zero, flagged step."""
    result = ik.pose_step(jnp.zeros((6, 6)), jnp.ones(3), jnp.zeros(3), 1.0, 1.0, damping=0.0)
    assert result.degenerate
    np.testing.assert_array_equal(result.dq, jnp.zeros(6))


def test_twist_step_is_not_clamped():
    """The jog step passes large deltas through unclamped."""
    J = 0.01 * jnp.eye(6)
    result = ik.twist_step(J, jnp.array([0.1, 0.0, 0.0]), jnp.zeros(3), damping=0.0)
    assert not result.clamped
    np.testing.assert_allclose(result.dq[0], 10.0, rtol=1e-9)


def test_step_result_is_pytree():
    """Only dq is a traced leaf; the diagnostics ride along as static fields."""
    J = 0.5 * jnp.eye(6)
    result = ik.twist_step(J, jnp.array([0.01, 0.0, 0.0]), jnp.zeros(3))
    leaves = jax.tree_util.tree_leaves(result)
    assert len(leaves) == 1
    np.testing.assert_allclose(leaves[0], result.dq)

    scaled = result.replace(dq=2.0 * result.dq)
    np.testing.assert_allclose(scaled.dq, 2.0 * result.dq)
    assert scaled.error_norm == result.error_norm
    assert scaled.clamped == result.clamped


# Resolved-rate controller
def test_pose_tracking_converges():
    """Repeated pose steps reach a reachable target."""
    robot = _scene_robot()
    robot.set_q(Q_START)

    T_target = robot.forward_kinematics(Q_START + Q_OFFSET)
    target_p = se3.get_position(T_target)
    target_R = se3.get_rotation(T_target)

    errors = []
    for _ in range(600):
        result = robot.step_resolved_rate_to_pose(target_p, target_R, 10.0, 10.0, 1.0 / 60.0)
        errors.append(result.error_norm)
        if result.error_norm < 1e-5:
            break

    position, rotation = robot.end_effector_pose()
    assert jnp.linalg.norm(position - target_p) < 1e-3
    assert jnp.linalg.norm(so3.log(target_R @ rotation.T)) < 1e-3
    assert errors[-1] < 0.01 * errors[0]


def test_pose_tracking_position_bound():
    """Position error falls below 1 mm within 500 steps at dt = 1/60 and never grows by more than 2 mm."""
    robot = _scene_robot()
    robot.set_q(Q_START)

    T_target = robot.forward_kinematics(Q_START + Q_OFFSET)
    target_p = se3.get_position(T_target)
    target_R = se3.get_rotation(T_target)

    position, _ = robot.end_effector_pose()
    position_errors = [float(jnp.linalg.norm(position - target_p))]
    for _ in range(500):
        robot.step_resolved_rate_to_pose(target_p, target_R, 10.0, 10.0, 1.0 / 60.0)
        position, _ = robot.end_effector_pose()
        position_errors.append(float(jnp.linalg.norm(position - target_p)))
        if position_errors[-1] < 1e-3:
            break

    assert position_errors[-1] < 1e-3
    assert len(position_errors) - 1 < 500
    # Orientation correction may push the position back by up to a couple of millimetres
    increases = np.diff(np.array(position_errors))
    assert np.all(increases <= 2e-3)


def test_pose_tracking_accepts_quaternion_target():
    robot = _scene_robot()
    robot.set_q(Q_START)
    T_target = robot.forward_kinematics(Q_START + 0.2 * Q_OFFSET)
    quat = so3.to_quaternion(se3.get_rotation(T_target))

    first = robot.step_resolved_rate_to_pose(se3.get_position(T_target), quat, 5.0, 5.0, 1.0 / 60.0)
    for _ in range(300):
        last = robot.step_resolved_rate_to_pose(se3.get_position(T_target), quat, 5.0, 5.0, 1.0 / 60.0)
    assert last.error_norm < first.error_norm


def test_pose_step_respects_clamp_and_dt():
    """Per step |dq_i| <= 30 degrees * dt * speed_scale."""
    robot = _scene_robot()
    robot.set_q(Q_START)
    dt = 0.1
    far = jnp.array([0.0, 0.0, 3.0])
    result = robot.step_resolved_rate_to_pose(far, jnp.eye(3), 50.0, 50.0, dt)
    assert result.clamped
    assert float(jnp.max(jnp.abs(result.dq))) <= math.radians(30.0) * dt + 1e-12


def test_speed_scale_scales_step():
    """speed_scale multiplies the integrated step; zero or negative freezes q."""
    robot_a = _scene_robot()
    robot_b = _scene_robot()
    robot_a.set_q(Q_START)
    robot_b.set_q(Q_START)
    robot_b.speed_scale = 0.5

    T = robot_a.forward_kinematics(Q_START + 0.1 * Q_OFFSET)
    p, R = se3.get_position(T), se3.get_rotation(T)
    res_a = robot_a.step_resolved_rate_to_pose(p, R, 2.0, 2.0, 0.01)
    res_b = robot_b.step_resolved_rate_to_pose(p, R, 2.0, 2.0, 0.01)
    np.testing.assert_allclose(res_b.dq, 0.5 * res_a.dq, atol=1e-12)

    robot_b.speed_scale = -1.0
    q_before = robot_b.get_q()
    robot_b.step_resolved_rate_to_pose(p, R, 2.0, 2.0, 0.01)
    np.testing.assert_array_equal(robot_b.get_q(), q_before)


def test_pose_step_without_scene_is_noop(caplog):
    """Without a scene chain the pose step returns None and leaves q alone."""
    robot = DhRobot(default_six_axis_config())
    robot.set_q(Q_START)
    with caplog.at_level(logging.WARNING, logger="dh_kinematics.robot"):
        result = robot.step_resolved_rate_to_pose(jnp.zeros(3), jnp.eye(3), 1.0, 1.0, 0.01)
    assert result is None
    np.testing.assert_array_equal(robot.get_q(), Q_START)
    assert "no scene chain" in caplog.text


def test_pose_step_without_target_is_noop():
    robot = _scene_robot()
    assert robot.step_resolved_rate_to_pose(None, jnp.eye(3), 1.0, 1.0, 0.01) is None
    assert robot.step_resolved_rate_to_pose(jnp.zeros(3), None, 1.0, 1.0, 0.01) is None


def test_degenerate_step_leaves_q_and_warns(monkeypatch, caplog):
    """A near-singular solve applies a zero step and logs a warning."""
    import dh_kinematics.robot as robot_module

    robot = _scene_robot()
    robot.set_q(Q_START)
    monkeypatch.setattr(robot_module, "snapshot_jacobian", lambda *args, **kwargs: jnp.zeros((6, 6)))

    with caplog.at_level(logging.WARNING, logger="dh_kinematics.robot"):
        result = robot.step_resolved_rate_to_pose(jnp.array([1.0, 1.0, 1.0]), jnp.eye(3), 1.0, 1.0, 0.1, damping=0.0)

    assert result.degenerate
    np.testing.assert_array_equal(robot.get_q(), Q_START)
    assert "Near-singular" in caplog.text


@pytest.mark.parametrize("with_scene", [True, False])
def test_position_tracking_converges(with_scene):
    """Position-only steps reach the target with live or DH geometry."""
    config = _rotated_base_config()
    robot = _scene_robot(config) if with_scene else DhRobot(config)
    robot.set_q(Q_START)

    target = se3.get_position(config.base_transform @ robot.forward_kinematics(Q_START + Q_OFFSET))
    for _ in range(600):
        result = robot.step_resolved_rate_to_position(target, 10.0, 1.0 / 60.0)
        if result.error_norm < 1e-6:
            break

    position, _ = robot.end_effector_pose()
    assert jnp.linalg.norm(position - target) < 1e-3


def test_position_step_rejects_bad_target():
    robot = DhRobot(default_six_axis_config())
    with pytest.raises(ValueError):
        robot.step_resolved_rate_to_position(jnp.zeros(2), 1.0, 0.01)


def test_cartesian_twist_moves_end_effector():
    """A small world-space jog moves the end effector by about that much."""
    config = _rotated_base_config()
    robot = DhRobot(config)
    robot.set_q(Q_START)
    p_before, R_before = robot.end_effector_pose()
    J = robot.jacobian()

    delta = jnp.array([0.001, -0.0006, 0.0])
    result = robot.step_cartesian_twist(delta, jnp.zeros(3))
    p_after, R_after = robot.end_effector_pose()

    assert not result.clamped
    # The joint delta reproduces the twist expressed in the base frame
    R_base = se3.get_rotation(config.base_transform)
    expected_twist = jnp.concatenate([R_base.T @ delta, jnp.zeros(3)])
    np.testing.assert_allclose(J @ result.dq, expected_twist, atol=1e-6)

    np.testing.assert_allclose(p_after - p_before, delta, atol=1e-4)
    assert jnp.linalg.norm(so3.log(R_after @ R_before.T)) < 1e-3


def test_cartesian_twist_rotation():
    """A pure rotational jog turns the end effector about the world axis."""
    robot = DhRobot(default_six_axis_config())
    robot.set_q(Q_START)
    _, R_before = robot.end_effector_pose()

    d_rot = jnp.array([0.0, 0.0, 0.01])
    robot.step_cartesian_twist(jnp.zeros(3), d_rot)
    _, R_after = robot.end_effector_pose()
    np.testing.assert_allclose(so3.log(R_after @ R_before.T), d_rot, atol=5e-4)
