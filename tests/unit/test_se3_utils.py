"""Unit tests for SE3/SO3 helpers."""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from welding_demo.utils.se3_utils import (
    quat_from_two_vectors,
    se3_angdist,
    se3_from_matrix,
    se3_from_position_quat,
    se3_from_rpy,
    se3_from_trans,
    se3_interp,
    se3_quat,
    se3_rpy,
    se3_transdist,
    so3_rz,
)

pytestmark = pytest.mark.unit


class TestConstruction:
    def test_rpy_round_trip(self):
        pose = se3_from_rpy(0.1, 0.2, 0.3, 0.4, -0.5, 0.6)
        assert np.allclose(pose.translation(), [0.1, 0.2, 0.3])
        assert np.allclose(se3_rpy(pose), [0.4, -0.5, 0.6])

    def test_rpy_degrees(self):
        pose = se3_from_rpy(0, 0, 0, 0, 0, 90, degrees=True)
        assert np.allclose(se3_rpy(pose, degrees=True), [0, 0, 90])

    def test_from_matrix_reorthonormalizes(self):
        T = np.eye(4)
        T[:3, :3] = Rotation.from_euler("z", 0.3).as_matrix() * (1.0 + 1e-9)
        T[:3, 3] = [1.0, 2.0, 3.0]
        pose = se3_from_matrix(T)
        R = pose.rotationMatrix()
        assert np.allclose(R.T @ R, np.eye(3))
        assert np.allclose(pose.translation(), [1.0, 2.0, 3.0])

    def test_position_quat_uses_xyzw(self):
        quat = Rotation.from_euler("x", 0.7).as_quat()
        pose = se3_from_position_quat([0, 1, 2], quat)
        assert np.allclose(se3_quat(pose), quat) or np.allclose(se3_quat(pose), -quat)


class TestInterpolation:
    def test_endpoints_and_midpoint(self):
        a = se3_from_trans(0.0, 0.0, 0.0)
        b = se3_from_rpy(1.0, 0.0, 0.0, 0.0, 0.0, 1.0)

        assert np.allclose(se3_interp(a, b, 0.0).matrix(), a.matrix())
        assert np.allclose(se3_interp(a, b, 1.0).matrix(), b.matrix())

        mid = se3_interp(a, b, 0.5)
        assert np.allclose(mid.translation(), [0.5, 0.0, 0.0])
        assert np.isclose(se3_angdist(a, mid), 0.5)

    def test_clamps_parameter(self):
        a = se3_from_trans(0.0, 0.0, 0.0)
        b = se3_from_trans(1.0, 0.0, 0.0)
        assert np.allclose(se3_interp(a, b, 2.0).translation(), [1.0, 0.0, 0.0])

    def test_distances(self):
        a = se3_from_trans(0.0, 0.0, 0.0)
        b = se3_from_rpy(3.0, 4.0, 0.0, 0.0, 0.0, 0.25)
        assert np.isclose(se3_transdist(a, b), 5.0)
        assert np.isclose(se3_angdist(a, b), 0.25)


class TestQuatFromTwoVectors:
    @pytest.mark.parametrize(
        "a,b",
        [
            ([1, 0, 0], [0, 1, 0]),
            ([0.3, -0.2, 0.9], [1, 0, 0]),
            ([1, 0, 0], [1, 0, 0]),
        ],
    )
    def test_rotates_a_onto_b(self, a, b):
        quat = quat_from_two_vectors(a, b)
        a_n = np.asarray(a, float) / np.linalg.norm(a)
        b_n = np.asarray(b, float) / np.linalg.norm(b)
        assert np.allclose(Rotation.from_quat(quat).apply(a_n), b_n)

    def test_antiparallel_prefers_z_axis(self):
        quat = quat_from_two_vectors([-1, 0, 0], [1, 0, 0])
        assert np.allclose(np.abs(quat), [0, 0, 1, 0])

    def test_zero_vector_rejected(self):
        with pytest.raises(ValueError):
            quat_from_two_vectors([0, 0, 0], [1, 0, 0])


def test_so3_rz_rotates_about_z():
    assert np.allclose(so3_rz(np.pi / 2).apply([1, 0, 0]), [0, 1, 0])
    assert np.allclose(so3_rz(90, degrees=True).apply([1, 0, 0]), [0, 1, 0])
