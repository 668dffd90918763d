"""Shared test fixtures."""

import os
import socket

# Headless matplotlib for viewer tests
os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pytest

import welding_demo.robot_model as robot_model
from welding_demo.runtime.controller import SimulatedController
from welding_demo.runtime.state import RobotStateMonitor
from welding_demo.utils.se3_utils import se3_from_matrix


def _free_udp_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
    finally:
        s.close()


@pytest.fixture
def free_udp_port() -> int:
    return _free_udp_port()


@pytest.fixture
def udp_receiver():
    """Bound UDP socket on 127.0.0.1 with a short timeout."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(1.0)
    yield sock
    sock.close()


@pytest.fixture
def ready_q() -> np.ndarray:
    """Demo start configuration in radians."""
    return np.array(robot_model._named_states["ready"], dtype=np.float64)


@pytest.fixture
def ready_pose(ready_q):
    """Tool pose at the ready configuration."""
    return se3_from_matrix(robot_model.fkine(ready_q))


@pytest.fixture
def state_monitor(ready_q) -> RobotStateMonitor:
    return RobotStateMonitor(ready_q)


@pytest.fixture
def controller(state_monitor):
    """Running simulated controller without real-time pacing."""
    ctrl = SimulatedController(state_monitor, realtime=False)
    ctrl.start()
    yield ctrl
    ctrl.shutdown()
