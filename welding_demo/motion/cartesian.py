"""
Straight-line Cartesian path planning through a list of waypoints.

The tool moves along straight segments between consecutive waypoints. Each
segment is cut into steps no longer than ``eef_step`` and every intermediate
pose is solved by IK seeded with the previous solution, so the resulting
joint path stays on one branch of the inverse kinematics.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np
import roboticstoolbox as rtb
import sophuspy as sp
from numpy.typing import NDArray

from welding_demo.motion.trajectory import JointPath
from welding_demo.utils.ik import SolveIKResult, solve_ik
from welding_demo.utils.se3_utils import se3_from_matrix, se3_interp, se3_transdist

logger = logging.getLogger(__name__)

IKSolver = Callable[..., SolveIKResult]


@dataclass
class CartesianPathResult:
    """
    Outcome of a Cartesian path computation.

    Attributes:
        fraction: Share of the requested path that was achieved, in [0, 1]
        joint_path: Solved joint positions, starting with the start state
        poses: Tool pose for each joint path point
    """

    fraction: float
    joint_path: JointPath
    poses: list[sp.SE3] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.joint_path)


def _segment_steps(distance: float, eef_step: float) -> int:
    return int(np.floor(distance / eef_step)) + 1


def _jump_cutoff(positions: NDArray[np.float64], jump_threshold: float) -> int:
    """Number of leading path points kept by the joint-space jump test."""
    n_points = len(positions)
    if jump_threshold <= 0.0 or n_points < 2:
        return n_points

    dists = np.linalg.norm(np.diff(positions, axis=0), axis=1)
    limit = jump_threshold * float(np.mean(dists))
    over = np.nonzero(dists > limit)[0]
    if len(over) == 0:
        return n_points

    logger.debug(
        "Joint-space jump of %.4f rad at step %d (limit %.4f)",
        dists[over[0]],
        over[0] + 1,
        limit,
    )
    return int(over[0]) + 1


def compute_cartesian_path(
    robot: rtb.DHRobot,
    start_q: NDArray[np.float64],
    waypoints: Sequence[sp.SE3],
    eef_step: float,
    jump_threshold: float = 0.0,
    ik: IKSolver = solve_ik,
) -> CartesianPathResult:
    """
    Compute a joint path that moves the tool through ``waypoints`` in straight lines.

    Args:
        robot: Kinematic model used for forward kinematics and IK
        start_q: Start joint state in radians; becomes the first path point
        waypoints: Target tool poses, visited in order
        eef_step: Maximum translation between consecutive path points (m)
        jump_threshold: Allowed ratio between a step's joint-space distance
            and the mean step distance; 0 disables the check
        ik: IK solver with the signature of ``solve_ik``

    Returns:
        CartesianPathResult with the achieved fraction and the solved path

    Raises:
        ValueError: if ``eef_step`` is not positive
    """
    if eef_step <= 0.0:
        raise ValueError(f"eef_step must be positive, got {eef_step}")

    q_prev = np.asarray(start_q, dtype=np.float64).copy()
    start_pose = se3_from_matrix(np.asarray(robot.fkine(q_prev).A))
    positions: list[NDArray[np.float64]] = [q_prev]
    poses: list[sp.SE3] = [start_pose]

    n_waypoints = len(waypoints)
    if n_waypoints == 0:
        return CartesianPathResult(
            fraction=0.0, joint_path=JointPath(np.array(positions)), poses=poses
        )

    completed = 0
    segment_fraction = 0.0
    prev_pose = start_pose

    for wp_idx, target in enumerate(waypoints):
        n_steps = _segment_steps(se3_transdist(prev_pose, target), eef_step)
        failed_at: int | None = None

        for k in range(1, n_steps + 1):
            pose = se3_interp(prev_pose, target, k / n_steps)
            result = ik(robot, pose, q_prev, quiet_logging=True)
            if not result.success:
                failed_at = k
                logger.debug(
                    "IK failed at waypoint %d step %d/%d: %s",
                    wp_idx,
                    k,
                    n_steps,
                    result.violations,
                )
                break
            q_prev = np.asarray(result.q, dtype=np.float64)
            positions.append(q_prev)
            poses.append(pose)

        if failed_at is not None:
            segment_fraction = (failed_at - 1) / n_steps
            break

        completed += 1
        prev_pose = target

    fraction = (completed + segment_fraction) / n_waypoints

    path_rad = np.array(positions, dtype=np.float64)
    keep = _jump_cutoff(path_rad, jump_threshold)
    if keep < len(path_rad):
        fraction *= keep / len(path_rad)
        path_rad = path_rad[:keep]
        poses = poses[:keep]

    fraction = float(np.clip(fraction, 0.0, 1.0))
    logger.debug(
        "Cartesian path: %d/%d waypoints, %d points, fraction=%.3f",
        completed,
        n_waypoints,
        len(path_rad),
        fraction,
    )
    return CartesianPathResult(
        fraction=fraction, joint_path=JointPath(path_rad), poses=poses
    )
