"""
Motion pipeline for weld path generation and time parameterization.

- Geometry generators produce the weld ring waypoints and preview circles.
- Cartesian planning turns waypoints into a JointPath by seeded IK.
- TrajectoryBuilder converts a JointPath into a Trajectory via time-optimal
  path parameterization (TOPP-RA) or a point-to-point profile.
"""

from welding_demo.motion.cartesian import CartesianPathResult, compute_cartesian_path
from welding_demo.motion.geometry import (
    CircularMotion,
    generate_weld_ring,
    joint_path_to_tcp_poses,
    poses_to_positions,
)
from welding_demo.motion.trajectory import (
    JointPath,
    ProfileType,
    Trajectory,
    TrajectoryBuilder,
    build_joint_trajectory,
    clamp_scaling,
)

__all__ = [
    # Trajectory pipeline
    "JointPath",
    "Trajectory",
    "TrajectoryBuilder",
    "ProfileType",
    "build_joint_trajectory",
    "clamp_scaling",
    # Cartesian planning
    "CartesianPathResult",
    "compute_cartesian_path",
    # Geometry generators
    "CircularMotion",
    "generate_weld_ring",
    "joint_path_to_tcp_poses",
    "poses_to_positions",
]
