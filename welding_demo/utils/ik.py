"""
Inverse kinematics and joint limit checks for the planners.

IK runs roboticstoolbox's Levenberg-Marquardt solver seeded with the previous
configuration so consecutive path points stay on one branch.
"""

import logging
import time
from dataclasses import dataclass

import numpy as np
import roboticstoolbox as rtb
import sophuspy as sp
from numba import njit  # type: ignore[import-untyped]
from numpy.typing import ArrayLike, NDArray

from welding_demo.config import LIMITS

logger = logging.getLogger(__name__)

# Rate limiting for IK warnings (Cartesian paths solve hundreds of poses)
_ik_last_warn_time: float = 0.0
_IK_WARN_INTERVAL: float = 1.0  # Log at most once per second

# Solver settings. The LM tolerance bounds 0.5*|e|^2, not |e|
IK_TOLERANCE: float = 1e-12
IK_ITERATION_LIMIT: int = 50
IK_SEARCH_LIMIT: int = 3

# Accepted pose error of a converged solution (m, rad)
IK_POSITION_TOLERANCE: float = 1e-5
IK_ORIENTATION_TOLERANCE: float = 1e-4


def _pose_error(
    robot: rtb.DHRobot, q: NDArray[np.float64], Tep: NDArray[np.float64]
) -> tuple[float, float]:
    """Translation (m) and rotation angle (rad) between fkine(q) and ``Tep``."""
    T = np.asarray(robot.fkine(q).A, dtype=np.float64)
    pos_err = float(np.linalg.norm(T[:3, 3] - Tep[:3, 3]))
    cos_angle = 0.5 * (np.trace(T[:3, :3].T @ Tep[:3, :3]) - 1.0)
    return pos_err, float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))


def _rate_limited_warning(msg: str) -> None:
    """Log a warning with rate limiting to avoid spam."""
    global _ik_last_warn_time
    now = time.monotonic()
    if now - _ik_last_warn_time > _IK_WARN_INTERVAL:
        logger.warning(msg)
        _ik_last_warn_time = now


@dataclass
class SolveIKResult:
    """IK result with limit violation tracking."""

    q: NDArray[np.float64]
    success: bool
    iterations: int
    residual: float
    violations: str | None = None


def solve_ik(
    robot: rtb.DHRobot,
    target_pose: sp.SE3 | NDArray[np.float64],
    current_q: NDArray[np.float64],
    quiet_logging: bool = False,
) -> SolveIKResult:
    """
    Levenberg-Marquardt IK seeded with the current configuration.

    Parameters
    ----------
    robot : DHRobot
        roboticstoolbox robot model
    target_pose : sp.SE3 | NDArray[np.float64]
        Target tool pose as SE3 or 4x4 homogeneous matrix (meters)
    current_q : NDArray[np.float64]
        Seed joint configuration in radians
    quiet_logging : bool, optional
        If True, suppress warning logs (default: False)

    Returns
    -------
    SolveIKResult
        success - True if the solution is on target and within joint limits
        q - Joint configuration in radians
        iterations - Number of iterations used
        residual - Final error value
        violations - Error message if failed, None if successful
    """
    Tep = np.asarray(
        target_pose.matrix() if isinstance(target_pose, sp.SE3) else target_pose,
        dtype=np.float64,
    )
    seed = np.asarray(current_q, dtype=np.float64)

    sol = robot.ikine_LM(
        Tep,
        q0=seed,
        ilimit=IK_ITERATION_LIMIT,
        slimit=IK_SEARCH_LIMIT,
        tol=IK_TOLERANCE,
        joint_limits=True,
    )

    result = SolveIKResult(
        q=np.asarray(sol.q, dtype=np.float64).copy(),
        success=bool(sol.success),
        iterations=int(sol.iterations),
        residual=float(sol.residual),
    )

    if not result.success:
        result.violations = f"IK failed to solve ({sol.reason or 'no reason given'})."
        if not quiet_logging:
            _rate_limited_warning(result.violations)
        return result

    pos_err, rot_err = _pose_error(robot, result.q, Tep)
    if pos_err > IK_POSITION_TOLERANCE or rot_err > IK_ORIENTATION_TOLERANCE:
        result.success = False
        result.violations = (
            f"IK solution misses the target by {pos_err * 1e3:.3f} mm / {rot_err:.2e} rad."
        )
        if not quiet_logging:
            _rate_limited_warning(result.violations)
        return result

    if not check_limits(seed, result.q, allow_recovery=True, log=not quiet_logging):
        result.success = False
        result.violations = "IK solution violates joint limits."

    return result


# -----------------------------
# Joint limit checks
# -----------------------------
_Q_MIN = np.ascontiguousarray(LIMITS.joint.position.rad[:, 0])
_Q_MAX = np.ascontiguousarray(LIMITS.joint.position.rad[:, 1])

# Per-joint verdicts written by _limit_codes
LIMIT_OK = 0
CUR_BELOW = 1
CUR_ABOVE = 2
TARGET_BELOW = 3
TARGET_ABOVE = 4

_CODE_LABELS = {
    CUR_BELOW: "cur<min",
    CUR_ABOVE: "cur>max",
    TARGET_BELOW: "target<min",
    TARGET_ABOVE: "target>max",
}


@njit(cache=True)
def _limit_codes(
    q: NDArray[np.float64],
    target: NDArray[np.float64],
    q_min: NDArray[np.float64],
    q_max: NDArray[np.float64],
    has_target: bool,
    allow_recovery: bool,
    codes: NDArray[np.int8],
) -> bool:
    """Fill ``codes`` with one verdict per joint. Returns True if every joint is OK.

    A joint already outside its range is OK only when recovery is allowed
    and the target does not move it further out.
    """
    ok = True
    for i in range(q.shape[0]):
        code = LIMIT_OK
        if q[i] < q_min[i]:
            if not (has_target and allow_recovery and target[i] >= q[i]):
                code = CUR_BELOW
        elif q[i] > q_max[i]:
            if not (has_target and allow_recovery and target[i] <= q[i]):
                code = CUR_ABOVE
        elif has_target:
            if target[i] < q_min[i]:
                code = TARGET_BELOW
            elif target[i] > q_max[i]:
                code = TARGET_ABOVE
        codes[i] = code
        if code != LIMIT_OK:
            ok = False
    return ok


class _ViolationLog:
    """Logs limit violations when the set of offending joints changes, and the return to range."""

    def __init__(self) -> None:
        self.last: tuple[tuple[int, int], ...] = ()

    def update(self, codes: NDArray[np.int8]) -> None:
        current = tuple((int(i), int(codes[i])) for i in np.flatnonzero(codes))
        if current and current != self.last:
            logger.warning(
                "LIMIT VIOLATION: %s",
                " ".join(f"J{i + 1}:{_CODE_LABELS[c]}" for i, c in current),
            )
        elif not current and self.last:
            logger.info("Limits back in range")
        self.last = current


_violation_log = _ViolationLog()


def check_limits(
    q: ArrayLike,
    target_q: ArrayLike | None = None,
    allow_recovery: bool = True,
    *,
    log: bool = True,
) -> bool:
    """
    Whether ``q`` (and the move to ``target_q``, if given) respects the joint limits.

    With ``allow_recovery`` a joint that is already out of range may move
    back toward it. ``log`` enables the edge-triggered violation log.
    """
    q_arr = np.ascontiguousarray(q, dtype=np.float64).reshape(-1)
    has_target = target_q is not None
    if has_target:
        t_arr = np.ascontiguousarray(target_q, dtype=np.float64).reshape(-1)
    else:
        t_arr = q_arr
    codes = np.zeros(q_arr.shape[0], dtype=np.int8)

    ok = _limit_codes(q_arr, t_arr, _Q_MIN, _Q_MAX, has_target, allow_recovery, codes)
    if log:
        _violation_log.update(codes)
    return ok
