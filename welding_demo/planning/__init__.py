"""
Planning layer: the MoveGroup-style interface and the collision scene.
"""

from welding_demo.planning.move_group import MoveGroupInterface, RobotTrajectory
from welding_demo.planning.scene import (
    AttachedCollisionObject,
    CollisionObject,
    Operation,
    PlanningSceneInterface,
    PrimitiveType,
    SolidPrimitive,
    make_box,
)

__all__ = [
    "MoveGroupInterface",
    "RobotTrajectory",
    "PlanningSceneInterface",
    "CollisionObject",
    "AttachedCollisionObject",
    "SolidPrimitive",
    "PrimitiveType",
    "Operation",
    "make_box",
]
