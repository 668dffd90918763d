# Clean, hierarchical, vectorized, and typed robot configuration and helpers
import logging
from dataclasses import dataclass, field

import numpy as np
import roboticstoolbox as rtb
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# -----------------------------
# Typing aliases
# -----------------------------
Vec6f = NDArray[np.float64]
Limits2f = NDArray[np.float64]  # shape (6,2)

# -----------------------------
# Kinematic description (UR5, standard DH)
# -----------------------------
Joint_num = 6

_dh_d: Vec6f = np.array([0.089159, 0.0, 0.0, 0.10915, 0.09465, 0.0823])
_dh_a: Vec6f = np.array([0.0, -0.425, -0.39225, 0.0, 0.0, 0.0])
_dh_alpha: Vec6f = np.array([np.pi / 2, 0.0, 0.0, np.pi / 2, -np.pi / 2, 0.0])

JOINT_NAMES: tuple[str, ...] = (
    "shoulder_pan_joint",
    "shoulder_lift_joint",
    "elbow_joint",
    "wrist_1_joint",
    "wrist_2_joint",
    "wrist_3_joint",
)

LINK_NAMES: tuple[str, ...] = (
    "base_link",
    "shoulder_link",
    "upper_arm_link",
    "forearm_link",
    "wrist_1_link",
    "wrist_2_link",
    "wrist_3_link",
    "tool0",
)

BASE_LINK = "base_link"
TIP_LINK = "tool0"

# -----------------------------
# Joint limits
# -----------------------------
# Every UR5 joint turns +/- 360 deg
_joint_limits_degree: Limits2f = np.array(
    [[-360.0, 360.0]] * Joint_num,
    dtype=np.float64,
)

_joint_limits_radian: Limits2f = np.deg2rad(_joint_limits_degree).astype(np.float64)

# Joint speeds (rad/s) - 180 deg/s on every joint
_joint_max_speed: Vec6f = np.full(Joint_num, np.pi, dtype=np.float64)

# Joint accelerations (rad/s^2)
# Derived: a_max = v_max * 3 (reach max speed in ~0.33s)
_joint_max_acc: Vec6f = _joint_max_speed * 3.0

# Maximum jerk limits (rad/s^3)
# Derived: j_max = a_max * 10 (reach max accel in ~0.1s)
_joint_max_jerk: Vec6f = _joint_max_acc * 10.0


def _build_robot() -> rtb.DHRobot:
    """Build the UR5 kinematic chain with joint limits applied to each link."""
    links = [
        rtb.RevoluteDH(
            d=float(_dh_d[i]),
            a=float(_dh_a[i]),
            alpha=float(_dh_alpha[i]),
            qlim=_joint_limits_radian[i],
        )
        for i in range(Joint_num)
    ]
    return rtb.DHRobot(links, name="UR5", manufacturer="Universal Robots")


robot: rtb.DHRobot = _build_robot()

# -----------------------------
# Planning groups (SRDF equivalent)
# -----------------------------


@dataclass(frozen=True)
class JointModelGroup:
    """A named set of joints planned for together, with its tip link."""

    name: str
    joint_names: tuple[str, ...]
    base_link: str
    tip_link: str
    named_states: dict[str, tuple[float, ...]] = field(default_factory=dict)

    @property
    def variable_count(self) -> int:
        return len(self.joint_names)


_named_states: dict[str, tuple[float, ...]] = {
    "home": (0.0, -np.pi / 2, 0.0, -np.pi / 2, 0.0, 0.0),
    "up": (0.0, -np.pi / 2, 0.0, 0.0, 0.0, 0.0),
    # Elbow and wrist bent, away from the straight-arm singularities of home/up
    "ready": (0.0, -np.pi / 2, np.pi / 2, -np.pi / 2, -np.pi / 2, 0.0),
    # Flange facing up at the first point of the default weld ring, (0.6, 0, 0.6).
    # Wrist 3 starts near its lower limit since the ring turns it by about 6 rad.
    "weld_start": (0.182935, -1.816617, -1.283351, -1.612421, -np.pi / 2, -4.895324),
}

JOINT_MODEL_GROUPS: dict[str, JointModelGroup] = {
    "ur_manipulator": JointModelGroup(
        name="ur_manipulator",
        joint_names=JOINT_NAMES,
        base_link=BASE_LINK,
        tip_link=TIP_LINK,
        named_states=_named_states,
    ),
    "endeffector": JointModelGroup(
        name="endeffector",
        joint_names=(),
        base_link="wrist_3_link",
        tip_link=TIP_LINK,
    ),
}

# Demo start state
STANDBY_ANGLES_RAD: Vec6f = np.array(_named_states["ready"], dtype=np.float64)


def get_joint_model_group(name: str) -> JointModelGroup | None:
    return JOINT_MODEL_GROUPS.get(name)


def joint_model_group_names() -> list[str]:
    return list(JOINT_MODEL_GROUPS)


def fkine(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Forward kinematics of the tool flange as a 4x4 matrix (meters)."""
    return np.asarray(robot.fkine(np.asarray(q, dtype=np.float64)).A, dtype=np.float64)


def fkine_all_positions(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Positions of every link frame (base first), shape (7, 3)."""
    frames = robot.fkine_all(np.asarray(q, dtype=np.float64))
    return np.array([T.t for T in frames], dtype=np.float64)


def jacob0(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Geometric Jacobian in the base frame, shape (6, 6)."""
    return np.asarray(robot.jacob0(np.asarray(q, dtype=np.float64)), dtype=np.float64)


logger.debug(
    "Robot model %s loaded: %d joints, tip=%s", robot.name, robot.n, TIP_LINK
)
