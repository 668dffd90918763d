"""Fast SE3/SO3 utilities using sophuspy.

Poses are carried as ``sophuspy.SE3`` throughout the package; quaternions
use scipy's (x, y, z, w) ordering.
"""

import numpy as np
import sophuspy as sp
from numpy.typing import ArrayLike, NDArray
from scipy.spatial.transform import Rotation, Slerp

__all__ = [
    "se3_from_rpy",
    "se3_from_trans",
    "se3_from_matrix",
    "se3_from_position_quat",
    "se3_quat",
    "se3_rpy",
    "se3_interp",
    "se3_angdist",
    "se3_transdist",
    "so3_rz",
    "quat_from_two_vectors",
    "quat_from_rpy",
]


def se3_from_rpy(
    x: float,
    y: float,
    z: float,
    roll: float,
    pitch: float,
    yaw: float,
    degrees: bool = False,
) -> sp.SE3:
    """Create SE3 from position and RPY angles.

    Args:
        x, y, z: Translation components
        roll, pitch, yaw: Fixed-axis rotations about x, y, z
        degrees: If True, angles are in degrees
    """
    R = Rotation.from_euler("xyz", [roll, pitch, yaw], degrees=degrees).as_matrix()
    return sp.SE3(R, [x, y, z])


def se3_from_trans(x: float, y: float, z: float) -> sp.SE3:
    """Create SE3 from translation only (identity rotation)."""
    return sp.SE3(np.eye(3), [x, y, z])


def se3_from_matrix(matrix: np.ndarray) -> sp.SE3:
    """Create SE3 from 4x4 homogeneous transformation matrix."""
    R = Rotation.from_matrix(matrix[:3, :3]).as_matrix()  # re-orthonormalize
    return sp.SE3(R, matrix[:3, 3])


def se3_from_position_quat(position: ArrayLike, quat_xyzw: ArrayLike) -> sp.SE3:
    """Create SE3 from a position and an (x, y, z, w) quaternion."""
    R = Rotation.from_quat(np.asarray(quat_xyzw, dtype=np.float64)).as_matrix()
    return sp.SE3(R, np.asarray(position, dtype=np.float64))


def se3_quat(se3: sp.SE3) -> NDArray[np.float64]:
    """Extract the (x, y, z, w) quaternion of a pose."""
    return Rotation.from_matrix(se3.rotationMatrix()).as_quat()


def se3_rpy(se3: sp.SE3, degrees: bool = False) -> np.ndarray:
    """Extract fixed-axis [roll, pitch, yaw] angles from SE3."""
    return Rotation.from_matrix(se3.rotationMatrix()).as_euler("xyz", degrees=degrees)


def se3_interp(se3_1: sp.SE3, se3_2: sp.SE3, s: float) -> sp.SE3:
    """Interpolate a straight-line Cartesian pose.

    Translation is interpolated linearly and orientation by slerp, so the
    tool point moves along the segment between both poses.

    Args:
        se3_1: Start pose
        se3_2: End pose
        s: Interpolation factor [0, 1]
    """
    s = float(np.clip(s, 0.0, 1.0))
    t = (1.0 - s) * se3_1.translation() + s * se3_2.translation()
    key_rots = Rotation.from_matrix(
        np.stack([se3_1.rotationMatrix(), se3_2.rotationMatrix()])
    )
    R = Slerp(np.array([0.0, 1.0]), key_rots)(s).as_matrix()
    return sp.SE3(R, t)


def se3_angdist(se3_1: sp.SE3, se3_2: sp.SE3) -> float:
    """Angular distance between two poses in radians."""
    R_rel = se3_1.rotationMatrix().T @ se3_2.rotationMatrix()
    return float(Rotation.from_matrix(R_rel).magnitude())


def se3_transdist(se3_1: sp.SE3, se3_2: sp.SE3) -> float:
    """Euclidean distance between the translations of two poses."""
    return float(np.linalg.norm(se3_2.translation() - se3_1.translation()))


def so3_rz(angle: float, degrees: bool = False) -> Rotation:
    """Rotation about Z axis."""
    return Rotation.from_euler("z", angle, degrees=degrees)


def quat_from_rpy(roll: float, pitch: float, yaw: float) -> NDArray[np.float64]:
    """(x, y, z, w) quaternion from fixed-axis roll, pitch, yaw in radians."""
    return Rotation.from_euler("xyz", [roll, pitch, yaw]).as_quat()


def quat_from_two_vectors(a: ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """Shortest-arc rotation taking direction ``a`` onto direction ``b``.

    Returns an (x, y, z, w) quaternion. For antiparallel inputs the rotation
    is pi about an axis perpendicular to ``a``, preferring z, then y, then x.

    Raises:
        ValueError: if either vector has zero length
    """
    v0 = np.asarray(a, dtype=np.float64)
    v1 = np.asarray(b, dtype=np.float64)
    n0 = np.linalg.norm(v0)
    n1 = np.linalg.norm(v1)
    if n0 < 1e-12 or n1 < 1e-12:
        raise ValueError("quat_from_two_vectors requires non-zero vectors")
    v0 = v0 / n0
    v1 = v1 / n1
    c = float(np.dot(v0, v1))

    if c < -1.0 + 1e-9:
        for candidate in ((0.0, 0.0, 1.0), (0.0, 1.0, 0.0), (1.0, 0.0, 0.0)):
            e = np.array(candidate)
            axis = e - np.dot(e, v0) * v0
            norm = np.linalg.norm(axis)
            if norm > 1e-6:
                break
        axis = axis / norm
        return np.array([axis[0], axis[1], axis[2], 0.0])

    axis = np.cross(v0, v1)
    s = np.sqrt((1.0 + c) * 2.0)
    quat = np.array([axis[0] / s, axis[1] / s, axis[2] / s, 0.5 * s])
    return quat / np.linalg.norm(quat)
