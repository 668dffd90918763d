"""Unit tests for IK solving and joint limit checks."""

from types import SimpleNamespace

import numpy as np
import pytest

import welding_demo.robot_model as robot_model
from welding_demo.config import LIMITS
from welding_demo.utils.ik import check_limits, solve_ik
from welding_demo.utils.se3_utils import se3_from_matrix

pytestmark = pytest.mark.unit


class TestSolveIK:
    """Tests for solve_ik."""

    def test_reaches_nearby_pose(self, ready_q):
        """A small joint offset is recovered from the seed."""
        target_q = ready_q + np.array([0.05, -0.03, 0.04, 0.02, -0.05, 0.03])
        target = se3_from_matrix(robot_model.fkine(target_q))

        result = solve_ik(robot_model.robot, target, ready_q)

        assert result.success
        assert result.violations is None
        assert np.allclose(robot_model.fkine(result.q), target.matrix(), atol=1e-5)

    def test_accepts_homogeneous_matrix(self, ready_q):
        target = robot_model.fkine(ready_q + 0.02)
        result = solve_ik(robot_model.robot, target, ready_q, quiet_logging=True)
        assert result.success

    def test_solution_is_accurate(self, ready_q):
        """A converged solution lands on the target, not just near it."""
        target = robot_model.fkine(ready_q)
        target[2, 3] += 0.05

        result = solve_ik(robot_model.robot, target, ready_q)

        assert result.success
        reached = robot_model.fkine(result.q)
        assert np.linalg.norm(reached[:3, 3] - target[:3, 3]) < 1e-5
        assert np.allclose(reached[:3, :3], target[:3, :3], atol=1e-5)

    def test_off_target_solution_rejected(self, ready_q):
        """A solver that claims success 1 cm away from the target is not trusted."""

        class OffTargetRobot:
            def ikine_LM(self, Tep, **kwargs):
                return SimpleNamespace(
                    q=ready_q + 0.01, success=True, iterations=3, residual=1e-7, reason=""
                )

            def fkine(self, q):
                return robot_model.robot.fkine(q)

        target = robot_model.fkine(ready_q)
        result = solve_ik(OffTargetRobot(), target, ready_q, quiet_logging=True)

        assert not result.success
        assert "misses the target" in result.violations

    def test_unreachable_pose_fails(self, ready_q):
        """A target 5 m away is out of the UR5 workspace."""
        target = robot_model.fkine(ready_q)
        target[:3, 3] = [5.0, 0.0, 0.5]

        result = solve_ik(robot_model.robot, target, ready_q, quiet_logging=True)

        assert not result.success
        assert result.violations


class TestCheckLimits:
    """Tests for check_limits."""

    def test_inside_limits(self, ready_q):
        assert check_limits(ready_q, log=False)

    def test_outside_limits(self):
        q = np.zeros(6)
        q[2] = LIMITS.joint.position.rad[2, 1] + 0.1
        assert not check_limits(q, log=False)

    def test_recovery_toward_range_allowed(self):
        """A joint beyond its limit may move back toward the valid range."""
        q = np.zeros(6)
        q[0] = LIMITS.joint.position.rad[0, 1] + 0.1
        target = q.copy()
        target[0] -= 0.05

        assert check_limits(q, target, allow_recovery=True, log=False)
        assert not check_limits(q, target, allow_recovery=False, log=False)

    def test_target_outside_limits(self, ready_q):
        target = ready_q.copy()
        target[5] = LIMITS.joint.position.rad[5, 0] - 0.1
        assert not check_limits(ready_q, target, log=False)

    def test_violation_logged_once(self, caplog):
        """Violation warnings are edge-triggered."""
        q = np.zeros(6)
        q[1] = LIMITS.joint.position.rad[1, 1] + 0.1
        check_limits(np.zeros(6))  # reset edge state

        with caplog.at_level("WARNING", logger="welding_demo.utils.ik"):
            check_limits(q)
            check_limits(q)

        assert sum("LIMIT VIOLATION" in r.message for r in caplog.records) == 1
        check_limits(np.zeros(6))
