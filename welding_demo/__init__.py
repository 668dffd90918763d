"""
Welding demo

Drives a simulated six-axis arm (UR5) around a ring of center-facing
waypoints, a stand-in for following a weld seam.

Key components:
- MoveGroupInterface: Cartesian and joint-space planning plus execution
- PlanningSceneInterface: collision objects shown alongside the plan
- SimulatedController: background thread streaming trajectories
- VisualTools: marker publishing and operator prompts
- generate_weld_ring: the ring waypoints
"""

from . import robot_model
from ._version import __version__
from .motion.geometry import generate_weld_ring
from .planning.move_group import MoveGroupInterface, RobotTrajectory
from .planning.scene import PlanningSceneInterface
from .runtime.controller import SimulatedController
from .runtime.state import RobotStateMonitor
from .visualization.visual_tools import VisualTools

__all__ = [
    "__version__",
    "robot_model",
    "generate_weld_ring",
    "MoveGroupInterface",
    "RobotTrajectory",
    "PlanningSceneInterface",
    "SimulatedController",
    "RobotStateMonitor",
    "VisualTools",
]
