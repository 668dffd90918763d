"""
Simulated trajectory controller for the welding demo.

A daemon thread plays accepted trajectories into the RobotStateMonitor one
sample per control tick, and holds position while idle.
"""

import logging
import threading
import time
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from welding_demo.config import (
    EXECUTION_TIMEOUT_MARGIN_S,
    INTERVAL_S,
    LIMITS,
    START_STATE_TOLERANCE_RAD,
    TRACE,
)
from welding_demo.motion.trajectory import Trajectory
from welding_demo.runtime.loop_timer import LoopTimer, format_hz_summary
from welding_demo.runtime.state import RobotStateMonitor
from welding_demo.utils.errors import MoveItErrorCode

logger = logging.getLogger(__name__)


@dataclass
class ControllerConfig:
    """Configuration for the simulated controller."""

    loop_interval: float = INTERVAL_S
    start_tolerance: float = START_STATE_TOLERANCE_RAD
    timeout_margin: float = EXECUTION_TIMEOUT_MARGIN_S
    realtime: bool = True


@dataclass
class _Execution:
    """One accepted trajectory and its completion state."""

    positions: NDArray[np.float64]
    velocities: NDArray[np.float64]
    duration: float
    index: int = 0
    result: MoveItErrorCode = MoveItErrorCode.FAILURE
    done: threading.Event = field(default_factory=threading.Event)

    def finish(self, result: MoveItErrorCode) -> None:
        # First outcome wins
        if self.done.is_set():
            return
        self.result = result
        self.done.set()


class SimulatedController:
    """
    Background "spin thread" that executes joint trajectories.

    Trajectories are validated against the current state and the joint
    limits, then streamed into the state monitor tick by tick.
    """

    def __init__(
        self,
        state_monitor: RobotStateMonitor,
        config: ControllerConfig | None = None,
        realtime: bool | None = None,
    ):
        self.config = config if config is not None else ControllerConfig()
        if realtime is not None:
            self.config.realtime = realtime
        self.state_monitor = state_monitor
        self.running = False
        self.shutdown_event = threading.Event()

        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._active: _Execution | None = None
        self._thread: threading.Thread | None = None
        self._timer = LoopTimer(self.config.loop_interval, realtime=self.config.realtime)

        self._pos_min = LIMITS.joint.position.rad[:, 0]
        self._pos_max = LIMITS.joint.position.rad[:, 1]

    @property
    def realtime(self) -> bool:
        return self.config.realtime

    def is_executing(self) -> bool:
        with self._lock:
            return self._active is not None

    def start(self) -> None:
        """Start the control thread."""
        if self.running:
            logger.warning("Controller already running")
            return

        self.running = True
        self.shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._main_control_loop, name="controller", daemon=True
        )
        self._thread.start()
        logger.info(
            "Simulated controller started at %.0f Hz (realtime=%s)",
            1.0 / self.config.loop_interval,
            self.config.realtime,
        )

    def shutdown(self, timeout: float = 2.0) -> None:
        """Preempt any active trajectory and join the control thread."""
        if not self.running:
            return
        logger.info("Stopping controller...")
        self.stop()
        self.running = False
        self.shutdown_event.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Controller thread did not exit within %.1fs", timeout)
            self._thread = None
        logger.info("Controller stopped")

    def stop(self) -> None:
        """Preempt the active trajectory; the arm holds its current position."""
        with self._lock:
            active = self._active
            self._active = None
        if active is not None:
            logger.info("Trajectory preempted at sample %d/%d", active.index, len(active.positions))
            self.state_monitor.update(self.state_monitor.get_joint_positions())
            active.finish(MoveItErrorCode.PREEMPTED)

    def execute(
        self,
        trajectory: Trajectory,
        wait: bool = True,
        timeout: float | None = None,
    ) -> MoveItErrorCode:
        """
        Execute a trajectory.

        Args:
            trajectory: Joint trajectory sampled at the control rate
            wait: Block until the trajectory finished
            timeout: Maximum wait in seconds. Defaults to the trajectory
                duration plus a margin when running in real time.

        Returns:
            SUCCESS when finished (or accepted, if ``wait`` is False),
            INVALID_MOTION_PLAN when rejected, PREEMPTED when stopped,
            TIMED_OUT when ``timeout`` elapsed, CONTROL_FAILED when the
            controller is not running.
        """
        if not self.running:
            logger.error("Cannot execute trajectory: controller is not running")
            return MoveItErrorCode.CONTROL_FAILED

        execution = self._accept(trajectory)
        if execution is None:
            return MoveItErrorCode.INVALID_MOTION_PLAN

        if not wait:
            return MoveItErrorCode.SUCCESS

        if timeout is None and self.config.realtime:
            timeout = execution.duration + self.config.timeout_margin
        return self.wait_for_completion(execution, timeout)

    def wait_for_completion(
        self, execution: "_Execution | None" = None, timeout: float | None = None
    ) -> MoveItErrorCode:
        """Block until ``execution`` (or the active one) completes."""
        if execution is None:
            with self._lock:
                execution = self._active
            if execution is None:
                return MoveItErrorCode.SUCCESS

        if not execution.done.wait(timeout):
            logger.error("Trajectory execution timed out after %.2fs", timeout)
            with self._lock:
                if self._active is execution:
                    self._active = None
            execution.finish(MoveItErrorCode.TIMED_OUT)
            return MoveItErrorCode.TIMED_OUT
        return execution.result

    def _accept(self, trajectory: Trajectory) -> _Execution | None:
        positions = np.asarray(trajectory.positions, dtype=np.float64)
        if positions.ndim != 2 or len(positions) == 0:
            logger.error("Rejecting empty trajectory")
            return None

        current = self.state_monitor.get_joint_positions()
        if positions.shape[1] != len(current):
            logger.error(
                "Rejecting trajectory with %d joints, robot has %d",
                positions.shape[1],
                len(current),
            )
            return None

        deviation = float(np.max(np.abs(positions[0] - current)))
        if deviation > self.config.start_tolerance:
            logger.error(
                "Trajectory start deviates from current state by %.4f rad (tolerance %.4f)",
                deviation,
                self.config.start_tolerance,
            )
            return None

        below = np.any(positions < self._pos_min, axis=0)
        above = np.any(positions > self._pos_max, axis=0)
        if np.any(below | above):
            tokens = [
                f"J{i + 1}:" + ("<min" if below[i] else ">max")
                for i in np.nonzero(below | above)[0]
            ]
            logger.error("Trajectory violates joint limits: %s", " ".join(tokens))
            return None

        execution = _Execution(
            positions=positions,
            velocities=np.asarray(trajectory.velocities, dtype=np.float64),
            duration=float(trajectory.duration),
        )

        with self._lock:
            previous = self._active
            self._active = execution
        if previous is not None:
            logger.warning("New trajectory preempts the active one")
            previous.finish(MoveItErrorCode.PREEMPTED)

        logger.debug(
            "Trajectory accepted: %d samples, %.3fs", len(positions), execution.duration
        )
        self._wake.set()
        return execution

    def _step(self) -> bool:
        """Advance the active trajectory by one sample. Returns True while busy."""
        with self._lock:
            execution = self._active
            if execution is None:
                return False
            i = execution.index
            execution.index += 1
            finished = execution.index >= len(execution.positions)
            if finished:
                self._active = None

        velocities = (
            np.zeros_like(execution.positions[i]) if finished else execution.velocities[i]
        )
        self.state_monitor.update(execution.positions[i], velocities)
        logger.log(TRACE, "tick sample=%d/%d", i + 1, len(execution.positions))

        if finished:
            execution.finish(MoveItErrorCode.SUCCESS)
            logger.debug("Trajectory finished (%s)", format_hz_summary(self._timer.metrics))
        return not finished

    def _main_control_loop(self) -> None:
        """Play trajectories at the control rate; sleep on the wake event while idle."""
        self._timer.start()
        busy = False

        while self.running:
            try:
                if not busy:
                    self._wake.wait(timeout=self.config.loop_interval)
                    self._wake.clear()
                    if not self.running:
                        break
                    self._timer.start()

                busy = self._step()
                if busy:
                    self._timer.wait_for_next_tick()
                    self._log_periodic_status()

            except Exception as e:
                logger.error("Error in controller loop: %s", e, exc_info=True)
                with self._lock:
                    active = self._active
                    self._active = None
                if active is not None:
                    active.finish(MoveItErrorCode.CONTROL_FAILED)
                busy = False

    def _log_periodic_status(self) -> None:
        m = self._timer.metrics
        if self.config.realtime and m.should_log(time.perf_counter(), 3.0):
            logger.debug("loop: %s ov=%d", format_hz_summary(m), m.overrun_count)
