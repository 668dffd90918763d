"""Unit tests for the state monitor, loop timing and the simulated controller."""

import threading
import time

import numpy as np
import pytest

import welding_demo.robot_model as robot_model
from welding_demo.motion import Trajectory, build_joint_trajectory
from welding_demo.runtime.controller import SimulatedController
from welding_demo.runtime.loop_timer import LoopMetrics, LoopTimer, format_hz_summary
from welding_demo.runtime.state import RobotStateMonitor
from welding_demo.utils.errors import MoveItErrorCode

pytestmark = pytest.mark.unit


class TestRobotStateMonitor:
    """Tests for RobotStateMonitor."""

    def test_initial_positions(self, ready_q):
        monitor = RobotStateMonitor(ready_q)
        assert np.allclose(monitor.get_joint_positions(), ready_q)
        assert np.allclose(monitor.get_joint_velocities(), 0.0)
        assert monitor.joint_names == robot_model.JOINT_NAMES

    def test_update_bumps_sequence(self, state_monitor, ready_q):
        seq = state_monitor.seq
        state_monitor.update(ready_q + 0.1, np.ones(6))

        assert state_monitor.seq == seq + 1
        assert np.allclose(state_monitor.get_joint_positions(), ready_q + 0.1)
        assert np.allclose(state_monitor.get_joint_velocities(), 1.0)

    def test_returned_positions_are_copies(self, state_monitor):
        q = state_monitor.get_joint_positions()
        q[:] = 42.0
        assert not np.allclose(state_monitor.get_joint_positions(), 42.0)

    def test_wait_for_update_times_out(self, state_monitor):
        assert not state_monitor.wait_for_update(state_monitor.seq, timeout=0.01)

    def test_wait_for_update_wakes_on_update(self, state_monitor, ready_q):
        seq = state_monitor.seq
        t = threading.Timer(0.05, state_monitor.update, args=(ready_q,))
        t.start()
        try:
            assert state_monitor.wait_for_update(seq, timeout=2.0)
        finally:
            t.join()

    def test_fkine_follows_joint_changes(self, state_monitor, ready_q):
        first = state_monitor.get_fkine_matrix()
        assert np.allclose(first, robot_model.fkine(ready_q))

        state_monitor.update(ready_q + 0.2)
        second = state_monitor.get_fkine_se3()
        assert np.allclose(second.matrix(), robot_model.fkine(ready_q + 0.2))

    def test_fkine_cache_reused(self, state_monitor):
        assert state_monitor.get_fkine_se3() is state_monitor.get_fkine_se3()
        first = state_monitor.get_fkine_se3()
        state_monitor.invalidate_fkine_cache()
        assert state_monitor.get_fkine_se3() is not first


class TestLoopTiming:
    def test_metrics_statistics(self):
        m = LoopMetrics(0.01)
        for _ in range(100):
            m.record_period(0.01)
        m.compute_stats()

        assert m.mean_period_s == pytest.approx(0.01)
        assert m.std_period_s == pytest.approx(0.0, abs=1e-12)
        assert m.p99_period_s == pytest.approx(0.01)
        assert format_hz_summary(m).startswith("100.0Hz")

    def test_empty_metrics_summary(self):
        assert format_hz_summary(LoopMetrics()) == "0.0Hz σ=0.00ms p99=0.00ms"

    def test_should_log_interval(self):
        m = LoopMetrics()
        assert m.should_log(10.0, 3.0)
        assert not m.should_log(11.0, 3.0)
        assert m.should_log(13.5, 3.0)

    def test_realtime_timer_paces_ticks(self):
        timer = LoopTimer(0.01, busy_threshold_s=0.002)
        timer.start()
        t0 = time.perf_counter()
        for _ in range(5):
            timer.wait_for_next_tick()
        assert time.perf_counter() - t0 >= 0.045
        assert timer.metrics.loop_count == 5

    def test_non_realtime_timer_does_not_sleep(self):
        timer = LoopTimer(0.5, realtime=False)
        timer.start()
        t0 = time.perf_counter()
        for _ in range(10):
            timer.wait_for_next_tick()
        assert time.perf_counter() - t0 < 0.5
        assert timer.metrics.loop_count == 10


class TestSimulatedController:
    """Tests for trajectory execution on the simulated controller."""

    def test_executes_to_final_position(self, controller, state_monitor, ready_q):
        end = ready_q + 0.1
        traj = build_joint_trajectory(ready_q, end)

        code = controller.execute(traj)

        assert code == MoveItErrorCode.SUCCESS
        assert code
        assert np.allclose(state_monitor.get_joint_positions(), end, atol=1e-6)
        assert np.allclose(state_monitor.get_joint_velocities(), 0.0)
        assert not controller.is_executing()

    def test_rejects_start_deviation(self, controller, state_monitor, ready_q):
        traj = build_joint_trajectory(ready_q + 0.5, ready_q + 0.6)

        assert controller.execute(traj) == MoveItErrorCode.INVALID_MOTION_PLAN
        assert np.allclose(state_monitor.get_joint_positions(), ready_q)

    def test_rejects_joint_limit_violation(self, controller, ready_q):
        beyond = ready_q.copy()
        beyond[0] = 7.0
        traj = Trajectory(positions=np.vstack([ready_q, beyond]), duration=0.01)

        assert controller.execute(traj) == MoveItErrorCode.INVALID_MOTION_PLAN

    def test_rejects_wrong_joint_count(self, controller):
        traj = Trajectory(positions=np.zeros((3, 5)), duration=0.02)
        assert controller.execute(traj) == MoveItErrorCode.INVALID_MOTION_PLAN

    def test_rejects_empty_trajectory(self, controller):
        traj = Trajectory(positions=np.zeros((0, 6)), duration=0.0)
        assert controller.execute(traj) == MoveItErrorCode.INVALID_MOTION_PLAN

    def test_single_sample_trajectory(self, controller, ready_q):
        traj = Trajectory(positions=ready_q.reshape(1, 6), duration=0.0)
        assert controller.execute(traj) == MoveItErrorCode.SUCCESS

    def test_not_running(self, state_monitor, ready_q):
        ctrl = SimulatedController(state_monitor, realtime=False)
        traj = build_joint_trajectory(ready_q, ready_q + 0.1)
        assert ctrl.execute(traj) == MoveItErrorCode.CONTROL_FAILED

    def test_execute_without_wait(self, controller, state_monitor, ready_q):
        traj = build_joint_trajectory(ready_q, ready_q + 0.05)

        assert controller.execute(traj, wait=False) == MoveItErrorCode.SUCCESS
        assert controller.wait_for_completion(timeout=5.0) == MoveItErrorCode.SUCCESS
        assert np.allclose(state_monitor.get_joint_positions(), ready_q + 0.05, atol=1e-6)

    def test_consecutive_executions(self, controller, state_monitor, ready_q):
        mid = ready_q + 0.05
        assert controller.execute(build_joint_trajectory(ready_q, mid))
        assert controller.execute(build_joint_trajectory(mid, ready_q))
        assert np.allclose(state_monitor.get_joint_positions(), ready_q, atol=1e-6)


class TestRealtimeController:
    """Preemption and timeouts need real-time pacing."""

    @pytest.fixture
    def rt_controller(self, state_monitor):
        ctrl = SimulatedController(state_monitor, realtime=True)
        ctrl.start()
        yield ctrl
        ctrl.shutdown()

    def test_stop_preempts(self, rt_controller, state_monitor, ready_q):
        traj = build_joint_trajectory(ready_q, ready_q + 1.0, velocity_scaling=0.1)
        assert traj.duration > 1.0
        results = []

        waiter = threading.Thread(target=lambda: results.append(rt_controller.execute(traj)))
        waiter.start()
        time.sleep(0.1)
        rt_controller.stop()
        waiter.join(timeout=2.0)

        assert results == [MoveItErrorCode.PREEMPTED]
        assert not rt_controller.is_executing()
        q = state_monitor.get_joint_positions()
        assert not np.allclose(q, ready_q + 1.0)

    def test_timeout(self, rt_controller, ready_q):
        traj = build_joint_trajectory(ready_q, ready_q + 1.0, velocity_scaling=0.1)

        code = rt_controller.execute(traj, timeout=0.05)

        assert code == MoveItErrorCode.TIMED_OUT
        assert not rt_controller.is_executing()

    def test_shutdown_preempts_waiter(self, state_monitor, ready_q):
        ctrl = SimulatedController(state_monitor, realtime=True)
        ctrl.start()
        traj = build_joint_trajectory(ready_q, ready_q + 1.0, velocity_scaling=0.1)
        results = []

        waiter = threading.Thread(target=lambda: results.append(ctrl.execute(traj)))
        waiter.start()
        time.sleep(0.1)
        ctrl.shutdown()
        waiter.join(timeout=2.0)

        assert results == [MoveItErrorCode.PREEMPTED]
