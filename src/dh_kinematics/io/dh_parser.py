"""Loader for XML robot descriptions in DH form.

A description looks like::

    <robot name="six_axis_arm">
      <base xyz="0 0 0" rpy="0 0 0"/>
      <speed value="1.0"/>
      <joint name="j1" type="R" alpha="-1.5707963" a="0" d="0.33"
             theta0="0" axis="0 1 0" q0="0" home_deg="0"/>
      ...
    </robot>

Angles are in radians except `home_deg`. Joints are read in document order.
"""

from typing import List

import jax.numpy as jnp
import numpy as np
from lxml import etree

from dh_kinematics.core.robot_model import JOINT_TYPES, DHModel, RobotConfig
from dh_kinematics.transforms import se3


def load_robot_config(path: str) -> RobotConfig:
    """Load an XML robot description into a RobotConfig.

    Args:
        path: Path to the XML file.

    Returns:
        RobotConfig: model, initial joint vector, home degrees, base pose and
        speed scale.

    Raises:
        ValueError: on a missing <robot> root, no joints, an unknown joint
                    type or a malformed number/vector.
    """
    tree = etree.parse(path)
    root = tree.getroot()
    if root.tag != "robot":
        raise ValueError(f"Expected <robot> root element, found <{root.tag}>")

    joints = root.findall("joint")
    if not joints:
        raise ValueError(f"Robot description '{path}' has no <joint> elements")

    alpha: List[float] = []
    a: List[float] = []
    d: List[float] = []
    theta0: List[float] = []
    axes: List[np.ndarray] = []
    q0: List[float] = []
    home_deg: List[float] = []
    joint_types = ""

    for joint in joints:
        name = joint.get("name", f"joint{len(alpha)}")
        joint_type = joint.get("type", "R").upper()
        if joint_type not in JOINT_TYPES:
            raise ValueError(f"Joint '{name}' has unknown type '{joint_type}'; expected R or P")
        joint_types += joint_type

        alpha.append(_float(joint, "alpha", name))
        a.append(_float(joint, "a", name))
        d.append(_float(joint, "d", name))
        theta0.append(_float(joint, "theta0", name))
        q0.append(_float(joint, "q0", name))
        home_deg.append(_float(joint, "home_deg", name))
        axes.append(_vector(joint.get("axis", "0 0 1"), f"axis of joint '{name}'"))

    base_transform = jnp.eye(4)
    base_elem = root.find("base")
    if base_elem is not None:
        xyz = _vector(base_elem.get("xyz", "0 0 0"), "base xyz")
        rpy = _vector(base_elem.get("rpy", "0 0 0"), "base rpy")
        base_transform = se3.from_position_and_rotation(jnp.array(xyz), jnp.array(_rpy_to_rotation_matrix(rpy)))

    speed_scale = 1.0
    speed_elem = root.find("speed")
    if speed_elem is not None:
        speed_scale = _float(speed_elem, "value", "speed", default=1.0)

    model = DHModel.create(
        alpha=alpha,
        a=a,
        d=d,
        theta0=theta0,
        joint_types=joint_types,
        joint_axes=np.stack(axes),
    )
    return RobotConfig.from_dh_table(
        model,
        q0=q0,
        home_degrees=home_deg,
        base_transform=base_transform,
        speed_scale=speed_scale,
        name=root.get("name", "robot"),
    )


def _float(elem, attr: str, owner: str, default: float = 0.0) -> float:
    value = elem.get(attr)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Attribute '{attr}' of '{owner}' is not a number: {value!r}")


def _vector(text: str, what: str) -> np.ndarray:
    parts = text.split()
    if len(parts) != 3:
        raise ValueError(f"Expected 3 components for {what}, got {text!r}")
    try:
        return np.array([float(x) for x in parts])
    except ValueError:
        raise ValueError(f"Malformed vector for {what}: {text!r}")


def _rpy_to_rotation_matrix(rpy: np.ndarray) -> np.ndarray:
    """Convert roll-pitch-yaw angles to rotation matrix.

    Args:
        rpy: Array of [roll, pitch, yaw] angles in radians.

    Returns:
        3x3 rotation matrix R = R_z * R_y * R_x.
    """
    roll, pitch, yaw = rpy

    R_x = np.array([
        [1, 0, 0],
        [0, np.cos(roll), -np.sin(roll)],
        [0, np.sin(roll), np.cos(roll)]
    ])

    R_y = np.array([
        [np.cos(pitch), 0, np.sin(pitch)],
        [0, 1, 0],
        [-np.sin(pitch), 0, np.cos(pitch)]
    ])

    R_z = np.array([
        [np.cos(yaw), -np.sin(yaw), 0],
        [np.sin(yaw), np.cos(yaw), 0],
        [0, 0, 1]
    ])

    return R_z @ R_y @ R_x
