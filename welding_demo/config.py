"""
Central configuration for welding demo tunables and shared constants.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

TRACE: int = 5
logging.addLevelName(TRACE, "TRACE")
# Add Logger.trace if missing
if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]
    logging.TRACE = TRACE  # type: ignore[attr-defined]

TRACE_ENABLED = str(os.getenv("WELDING_DEMO_TRACE", "0")).lower() in (
    "1",
    "true",
    "yes",
    "on",
)

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_vec3(name: str, default: tuple[float, float, float]) -> tuple[float, float, float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        x, y, z = (float(v) for v in raw.replace(",", " ").split())
        return (x, y, z)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


# Planning defaults
PLANNING_GROUP: str = os.getenv("WELDING_DEMO_PLANNING_GROUP", "ur_manipulator")
PLANNING_FRAME: str = "base_link"
END_EFFECTOR_LINK: str = "tool0"
MARKER_NAMESPACE: str = os.getenv("WELDING_DEMO_MARKER_NS", "welding_demo_tutorial")

# Weld ring geometry (meters / radians). The ring stays clear of the
# base axis, where the flange cannot face up
RING_CENTER: tuple[float, float, float] = _env_vec3(
    "WELDING_DEMO_RING_CENTER", (0.4, 0.0, 0.6)
)
RING_RADIUS: float = _env_float("WELDING_DEMO_RING_RADIUS", 0.2)
RING_ANGLE_STEP: float = _env_float("WELDING_DEMO_RING_ANGLE_STEP", 0.5)
RING_FORWARD: tuple[float, float, float] = (1.0, 0.0, 0.0)
# Named state used as IK seed for the first ring waypoint
RING_START_STATE: str = "weld_start"

# Cartesian path interpolation resolution (m). A jump threshold of 0 disables
# the joint-space jump check, which is unsafe on real hardware.
EEF_STEP: float = _env_float("WELDING_DEMO_EEF_STEP", 0.01)
JUMP_THRESHOLD: float = _env_float("WELDING_DEMO_JUMP_THRESHOLD", 0.0)

# Default control/sample rates (Hz)
CONTROL_RATE_HZ: float = _env_float("WELDING_DEMO_CONTROL_RATE_HZ", 125.0)

# Centralized loop interval (seconds).
INTERVAL_S: float = max(1e-6, 1.0 / max(CONTROL_RATE_HZ, 1.0))

# Busy-wait headroom before each control deadline (ms)
BUSY_THRESHOLD_MS: float = _env_float("WELDING_DEMO_BUSY_THRESHOLD_MS", 1.0)

# Trajectory path sampling (fixed samples for point-to-point moves)
PATH_SAMPLES: int = int(os.getenv("WELDING_DEMO_PATH_SAMPLES", "50"))

# Max distance between the current state and a trajectory's first point
START_STATE_TOLERANCE_RAD: float = _env_float(
    "WELDING_DEMO_START_STATE_TOLERANCE", 0.01
)

# Execution timeout margin on top of the trajectory duration (s)
EXECUTION_TIMEOUT_MARGIN_S: float = 5.0

# Velocity/acceleration scaling used when a requested factor is <= 0
SCALING_FALLBACK: float = 0.1

LOG_LEVEL_DEFAULT: str = "INFO"

# Marker transport (all overridable via env)
# These defaults implement local-only multicast on loopback by default.
MARKER_TRANSPORT: str = (
    os.getenv("WELDING_DEMO_MARKER_TRANSPORT", "MULTICAST").strip().upper()
)
MCAST_GROUP: str = os.getenv("WELDING_DEMO_MCAST_GROUP", "239.255.0.102")
MCAST_PORT: int = int(os.getenv("WELDING_DEMO_MCAST_PORT", "50520"))
MCAST_TTL: int = int(os.getenv("WELDING_DEMO_MCAST_TTL", "1"))
MCAST_IF: str = os.getenv("WELDING_DEMO_MCAST_IF", "127.0.0.1")
MARKER_UNICAST_HOST: str = os.getenv("WELDING_DEMO_MARKER_UNICAST_HOST", "127.0.0.1")

# Operator gating (remote control datagrams from the viewer)
REMOTE_CONTROL_HOST: str = os.getenv("WELDING_DEMO_REMOTE_HOST", "127.0.0.1")
REMOTE_CONTROL_PORT: int = int(os.getenv("WELDING_DEMO_REMOTE_PORT", "50521"))


import welding_demo.robot_model as robot_model  # noqa: E402 - keep env constants importable without the model

# Demo start state ("ready") in radians - pass-through from robot definition
STANDBY_ANGLES_RAD: NDArray[np.float64] = robot_model.STANDBY_ANGLES_RAD.copy()


# -----------------------------------------------------------------------------
# Robot Limits - Unified SI-unit hierarchy
# -----------------------------------------------------------------------------
# Usage:
#   LIMITS.joint.hard.velocity      -> [6] joint velocity limits (rad/s)
#   LIMITS.joint.position.rad       -> [6,2] position limits [min,max] (rad)
#   LIMITS.joint.position.rad[:, 0] -> [6] min position limits (rad)


@dataclass(frozen=True, slots=True)
class Kinodynamic:
    """Joint kinodynamic limits (velocity, acceleration, jerk)."""

    velocity: NDArray[np.float64]  # rad/s
    acceleration: NDArray[np.float64]  # rad/s²
    jerk: NDArray[np.float64]  # rad/s³


@dataclass(frozen=True, slots=True)
class JointPosition:
    """Joint position limits in various units."""

    deg: NDArray[np.float64]  # [6, 2] - [min, max] per joint
    rad: NDArray[np.float64]  # [6, 2]


@dataclass(frozen=True, slots=True)
class JointLimits:
    """All joint limits."""

    hard: Kinodynamic
    position: JointPosition


@dataclass(frozen=True, slots=True)
class RobotLimits:
    """Unified robot limits namespace."""

    joint: JointLimits


LIMITS: RobotLimits = RobotLimits(
    joint=JointLimits(
        hard=Kinodynamic(
            velocity=robot_model._joint_max_speed.copy(),
            acceleration=robot_model._joint_max_acc.copy(),
            jerk=robot_model._joint_max_jerk.copy(),
        ),
        position=JointPosition(
            deg=robot_model._joint_limits_degree.copy(),
            rad=robot_model._joint_limits_radian.copy(),
        ),
    ),
)

# Validate limits at module load
if np.any(LIMITS.joint.hard.velocity <= 0) or np.any(
    LIMITS.joint.hard.acceleration <= 0
):
    raise ValueError("Joint limits must be positive. Check robot_model config.")
