from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

import numpy as np
import sophuspy as sp
from numpy.typing import ArrayLike, NDArray

import welding_demo.robot_model as robot_model
from welding_demo.config import STANDBY_ANGLES_RAD
from welding_demo.utils.se3_utils import se3_from_matrix

logger = logging.getLogger(__name__)


@dataclass
class RobotState:
    """
    Joint state of the simulated arm.

    Buffers are preallocated ndarrays updated in place by the controller thread.
    """

    positions: NDArray[np.float64] = field(
        default_factory=lambda: STANDBY_ANGLES_RAD.copy()
    )
    velocities: NDArray[np.float64] = field(
        default_factory=lambda: np.zeros(robot_model.Joint_num, dtype=np.float64)
    )
    stamp: float = 0.0
    seq: int = 0

    # Forward kinematics cache (invalidated when positions change)
    _fkine_last_positions: NDArray[np.float64] = field(
        default_factory=lambda: np.full(robot_model.Joint_num, np.nan)
    )
    _fkine_se3: sp.SE3 | None = None
    _fkine_mat: NDArray[np.float64] = field(
        default_factory=lambda: np.eye(4, dtype=np.float64)
    )


class RobotStateMonitor:
    """
    Thread-safe access to the current robot state.

    The controller thread writes joint states; planners and the demo loop read
    them. ``wait_for_update`` blocks until a newer state than the caller's
    last seen sequence number arrives.
    """

    def __init__(self, initial_positions: ArrayLike | None = None):
        self._state = RobotState()
        if initial_positions is not None:
            self._state.positions[:] = np.asarray(initial_positions, dtype=np.float64)
        self._state.stamp = time.monotonic()
        self._lock = threading.RLock()
        self._updated = threading.Condition(self._lock)
        self.joint_names: tuple[str, ...] = robot_model.JOINT_NAMES

    @property
    def seq(self) -> int:
        with self._lock:
            return self._state.seq

    def update(
        self,
        positions: ArrayLike,
        velocities: ArrayLike | None = None,
    ) -> None:
        """Publish a new joint state and wake any waiters."""
        with self._updated:
            np.copyto(self._state.positions, np.asarray(positions, dtype=np.float64))
            if velocities is None:
                self._state.velocities.fill(0.0)
            else:
                np.copyto(
                    self._state.velocities, np.asarray(velocities, dtype=np.float64)
                )
            self._state.stamp = time.monotonic()
            self._state.seq += 1
            self._updated.notify_all()

    def get_joint_positions(self) -> NDArray[np.float64]:
        with self._lock:
            return self._state.positions.copy()

    def get_joint_velocities(self) -> NDArray[np.float64]:
        with self._lock:
            return self._state.velocities.copy()

    def get_stamp(self) -> float:
        with self._lock:
            return self._state.stamp

    def wait_for_update(self, last_seq: int, timeout: float | None = None) -> bool:
        """
        Block until the state sequence number passes ``last_seq``.

        Returns False on timeout.
        """
        with self._updated:
            return self._updated.wait_for(
                lambda: self._state.seq > last_seq, timeout=timeout
            )

    # -----------------------------
    # Forward kinematics cache
    # -----------------------------

    def _ensure_fkine_updated(self) -> None:
        state = self._state
        if (
            state._fkine_se3 is not None
            and np.array_equal(state.positions, state._fkine_last_positions)
        ):
            return

        mat = robot_model.fkine(state.positions)
        np.copyto(state._fkine_mat, mat)
        state._fkine_se3 = se3_from_matrix(mat)
        np.copyto(state._fkine_last_positions, state.positions)

    def get_fkine_se3(self) -> sp.SE3:
        """Current end-effector pose, recomputed only when the joints changed."""
        with self._lock:
            self._ensure_fkine_updated()
            assert self._state._fkine_se3 is not None
            return self._state._fkine_se3

    def get_fkine_matrix(self) -> NDArray[np.float64]:
        """Current end-effector pose as a 4x4 matrix (meters)."""
        with self._lock:
            self._ensure_fkine_updated()
            return self._state._fkine_mat.copy()

    def invalidate_fkine_cache(self) -> None:
        with self._lock:
            self._state._fkine_se3 = None
            logger.debug("fkine cache invalidated")
