"""
Geometry generation for weld seam paths.

This module provides pure geometry generators for the weld ring and for
uniformly sampled circles. These are used by the demo loop (Cartesian path
planning) and by the visualization layer (path preview).

All generators are stateless - they produce Cartesian path geometry without
depending on controller state or executing any motion.
"""

import logging
from collections.abc import Sequence

import numpy as np
import sophuspy as sp
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation

import welding_demo.robot_model as robot_model
from welding_demo.config import CONTROL_RATE_HZ
from welding_demo.utils.se3_utils import (
    quat_from_two_vectors,
    se3_from_position_quat,
    so3_rz,
)

logger = logging.getLogger(__name__)

# Default control rate for geometry sampling
DEFAULT_CONTROL_RATE = CONTROL_RATE_HZ

# The torch is aimed so that the ring normal maps onto the tool's +x axis
TOOL_APPROACH_AXIS: NDArray[np.float64] = np.array([1.0, 0.0, 0.0])


def generate_weld_ring(
    center: Sequence[float] | NDArray,
    radius: float,
    angle_step: float,
    forward: Sequence[float] | NDArray = (1.0, 0.0, 0.0),
) -> list[sp.SE3]:
    """Generate the center-facing waypoints of a horizontal weld ring.

    Starting at angle 0 and advancing by ``angle_step`` while the angle stays
    below 2*pi, each waypoint sits at ``center + Rz(angle) * forward * radius``.
    Its orientation is the shortest rotation taking
    ``Rz(pi - angle) * forward * radius`` onto the tool approach axis.

    Args:
        center: Ring center [x, y, z] in meters
        radius: Ring radius in meters
        angle_step: Angular spacing between waypoints in radians
        forward: Direction of the first waypoint as seen from the center

    Returns:
        List of SE3 waypoints, in visiting order

    Raises:
        ValueError: if ``radius`` or ``angle_step`` is not positive
    """
    if radius <= 0.0:
        raise ValueError(f"Ring radius must be positive, got {radius}")
    if angle_step <= 0.0:
        raise ValueError(f"Ring angle step must be positive, got {angle_step}")

    center_np = np.asarray(center, dtype=np.float64)
    spoke = np.asarray(forward, dtype=np.float64) * radius

    waypoints: list[sp.SE3] = []
    angle = 0.0
    while angle < 2.0 * np.pi:
        position = center_np + so3_rz(angle).apply(spoke)

        q_rot = so3_rz(np.pi - angle)
        logger.debug("q_rot (xyzw) = %s", np.array2string(q_rot.as_quat(), precision=4))
        norm = q_rot.apply(spoke)

        quat = quat_from_two_vectors(norm, TOOL_APPROACH_AXIS)
        waypoints.append(se3_from_position_quat(position, quat))
        angle += angle_step

    logger.debug(
        "Weld ring: %d waypoints, center=%s, radius=%.3f",
        len(waypoints),
        center_np,
        radius,
    )
    return waypoints


def poses_to_positions(poses: Sequence[sp.SE3]) -> NDArray[np.float64]:
    """Stack the translations of SE3 poses into an (N, 3) array."""
    if len(poses) == 0:
        return np.empty((0, 3), dtype=np.float64)
    return np.array([p.translation() for p in poses], dtype=np.float64)


class _ShapeGenerator:
    """Base class for geometry generation."""

    def __init__(self, control_rate: float | None = None):
        self.control_rate = (
            control_rate if control_rate is not None else DEFAULT_CONTROL_RATE
        )

    def _get_perpendicular_vector(self, v: np.ndarray) -> np.ndarray:
        """Find a vector perpendicular to the given vector."""
        if abs(v[0]) < 0.9:
            cross = np.cross(v, [1, 0, 0])
        else:
            cross = np.cross(v, [0, 1, 0])
        return cross / np.linalg.norm(cross)


class CircularMotion(_ShapeGenerator):
    """Generate circles in 3D space.

    Positions are in meters. Samples carry no orientation; use
    ``generate_weld_ring`` for oriented waypoints.
    """

    def generate_circle(
        self,
        center: Sequence[float] | NDArray,
        radius: float,
        normal: Sequence[float] | NDArray = (0, 0, 1),
        duration: float = 4.0,
        start_point: Sequence[float] | None = None,
    ) -> NDArray[np.float64]:
        """Generate a complete circle (uniformly sampled geometry).

        Args:
            center: Circle center [x, y, z]
            radius: Circle radius (same units as center)
            normal: Normal vector defining circle plane
            duration: Affects number of sample points (duration * control_rate)
            start_point: If provided, circle starts at nearest point to this

        Returns:
            (N, 3) array of positions around the circle, first == last
        """
        if radius <= 0.0:
            raise ValueError(f"Circle radius must be positive, got {radius}")

        normal_np = np.array(normal, dtype=float)
        normal_np = normal_np / np.linalg.norm(normal_np)
        u = self._get_perpendicular_vector(normal_np)
        v = np.cross(normal_np, u)
        center_np = np.array(center, dtype=float)

        start_angle = 0.0
        if start_point is not None:
            to_start = np.array(start_point[:3], dtype=float) - center_np
            to_start_plane = to_start - np.dot(to_start, normal_np) * normal_np
            dist_in_plane = np.linalg.norm(to_start_plane)

            if dist_in_plane > 1e-6:
                to_start_normalized = to_start_plane / dist_in_plane
                start_angle = np.arctan2(
                    np.dot(to_start_normalized, v), np.dot(to_start_normalized, u)
                )

        num_points = max(2, int(duration * self.control_rate))
        angles = start_angle + np.linspace(0, 2 * np.pi, num_points)
        cos_a = np.cos(angles).reshape(-1, 1)
        sin_a = np.sin(angles).reshape(-1, 1)
        return center_np + radius * (cos_a * u + sin_a * v)


def joint_path_to_tcp_poses(
    joint_positions: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Convert a joint-space path to tool poses using forward kinematics.

    Useful for visualizing the tool trajectory that results from
    joint-space interpolation.

    Args:
        joint_positions: (N, 6) array of joint angles in radians

    Returns:
        (N, 6) array of [x, y, z, rx, ry, rz] poses in meters and radians
    """
    n_points = len(joint_positions)
    tcp_poses = np.empty((n_points, 6), dtype=np.float64)

    for i, q in enumerate(joint_positions):
        T = robot_model.fkine(q)
        tcp_poses[i, :3] = T[:3, 3]
        tcp_poses[i, 3:] = Rotation.from_matrix(T[:3, :3]).as_euler("xyz")

    return tcp_poses
