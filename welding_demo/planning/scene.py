"""
Planning scene: collision objects known to the planner.

Objects are tracked and shown in the viewer. They are never collision
checked; planning ignores them.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum

import numpy as np
import sophuspy as sp

from welding_demo.config import PLANNING_FRAME
from welding_demo.utils.errors import SceneError

logger = logging.getLogger(__name__)


class PrimitiveType(IntEnum):
    BOX = 1
    SPHERE = 2
    CYLINDER = 3


# Number of dimensions each primitive takes
_PRIMITIVE_DIMS: dict[PrimitiveType, int] = {
    PrimitiveType.BOX: 3,  # x, y, z
    PrimitiveType.SPHERE: 1,  # radius
    PrimitiveType.CYLINDER: 2,  # height, radius
}


@dataclass(frozen=True)
class SolidPrimitive:
    """Box (x, y, z), sphere (radius) or cylinder (height, radius), in meters."""

    type: PrimitiveType
    dimensions: tuple[float, ...]

    BOX_X = 0
    BOX_Y = 1
    BOX_Z = 2
    SPHERE_RADIUS = 0
    CYLINDER_HEIGHT = 0
    CYLINDER_RADIUS = 1

    def __post_init__(self) -> None:
        expected = _PRIMITIVE_DIMS[self.type]
        if len(self.dimensions) != expected:
            raise SceneError(
                f"{self.type.name} needs {expected} dimensions, got {len(self.dimensions)}"
            )
        if any(d <= 0.0 for d in self.dimensions):
            raise SceneError(f"{self.type.name} dimensions must be positive: {self.dimensions}")

    @classmethod
    def box(cls, x: float, y: float, z: float) -> SolidPrimitive:
        return cls(PrimitiveType.BOX, (float(x), float(y), float(z)))

    @classmethod
    def sphere(cls, radius: float) -> SolidPrimitive:
        return cls(PrimitiveType.SPHERE, (float(radius),))

    @classmethod
    def cylinder(cls, height: float, radius: float) -> SolidPrimitive:
        return cls(PrimitiveType.CYLINDER, (float(height), float(radius)))


class Operation(Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass
class CollisionObject:
    """
    A named object made of primitives, each with its pose in ``frame_id``.
    """

    id: str
    frame_id: str = PLANNING_FRAME
    primitives: list[SolidPrimitive] = field(default_factory=list)
    primitive_poses: list[sp.SE3] = field(default_factory=list)
    operation: Operation = Operation.ADD

    def validate(self) -> None:
        if not self.id:
            raise SceneError("Collision object needs a non-empty id")
        if self.operation is Operation.ADD:
            if not self.primitives:
                raise SceneError(f"Collision object '{self.id}' has no primitives")
            if len(self.primitives) != len(self.primitive_poses):
                raise SceneError(
                    f"Collision object '{self.id}': {len(self.primitives)} primitives "
                    f"but {len(self.primitive_poses)} poses"
                )


@dataclass
class AttachedCollisionObject:
    """A collision object carried by a robot link."""

    link_name: str
    object: CollisionObject
    touch_links: tuple[str, ...] = ()


class PlanningSceneInterface:
    """Registry of world and attached collision objects."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, CollisionObject] = {}
        self._attached: dict[str, AttachedCollisionObject] = {}

    def apply_collision_object(self, obj: CollisionObject) -> None:
        """Add or remove a single object according to its operation."""
        obj.validate()
        with self._lock:
            if obj.operation is Operation.REMOVE:
                if obj.id not in self._objects and obj.id not in self._attached:
                    raise SceneError(f"Unknown collision object '{obj.id}'")
                self._objects.pop(obj.id, None)
                self._attached.pop(obj.id, None)
                logger.info("Removed collision object '%s'", obj.id)
                return
            replaced = obj.id in self._objects
            self._objects[obj.id] = obj
        logger.info(
            "%s collision object '%s' (%d primitives)",
            "Updated" if replaced else "Added",
            obj.id,
            len(obj.primitives),
        )

    def add_collision_objects(self, objects: list[CollisionObject]) -> None:
        for obj in objects:
            self.apply_collision_object(obj)

    def remove_collision_objects(self, object_ids: list[str]) -> None:
        for object_id in object_ids:
            self.apply_collision_object(
                CollisionObject(id=object_id, operation=Operation.REMOVE)
            )

    def get_known_object_names(self) -> list[str]:
        """Ids of world objects, then attached objects."""
        with self._lock:
            return list(self._objects) + list(self._attached)

    def get_objects(self, object_ids: list[str] | None = None) -> dict[str, CollisionObject]:
        with self._lock:
            if object_ids is None:
                return dict(self._objects)
            return {i: self._objects[i] for i in object_ids if i in self._objects}

    def get_attached_objects(
        self, object_ids: list[str] | None = None
    ) -> dict[str, AttachedCollisionObject]:
        with self._lock:
            if object_ids is None:
                return dict(self._attached)
            return {i: self._attached[i] for i in object_ids if i in self._attached}

    def attach(
        self, object_id: str, link_name: str, touch_links: tuple[str, ...] = ()
    ) -> AttachedCollisionObject:
        """Move a world object onto ``link_name``."""
        with self._lock:
            obj = self._objects.pop(object_id, None)
            if obj is None:
                raise SceneError(f"Cannot attach unknown object '{object_id}'")
            attached = AttachedCollisionObject(
                link_name=link_name, object=obj, touch_links=tuple(touch_links)
            )
            self._attached[object_id] = attached
        logger.info("Attached '%s' to %s", object_id, link_name)
        return attached

    def detach(self, object_id: str, world_pose: sp.SE3 | None = None) -> CollisionObject:
        """Return an attached object to the world.

        ``world_pose`` is the pose of the carrying link at detach time; the
        object's primitives are re-expressed in the planning frame with it.
        """
        with self._lock:
            attached = self._attached.pop(object_id, None)
            if attached is None:
                raise SceneError(f"Object '{object_id}' is not attached")
            obj = attached.object
            if world_pose is not None and obj.frame_id == attached.link_name:
                obj.primitive_poses = [world_pose * p for p in obj.primitive_poses]
                obj.frame_id = PLANNING_FRAME
            self._objects[object_id] = obj
        logger.info("Detached '%s' from %s", object_id, attached.link_name)
        return obj


def make_box(
    object_id: str,
    size: tuple[float, float, float],
    position: tuple[float, float, float],
    frame_id: str = PLANNING_FRAME,
) -> CollisionObject:
    """Axis-aligned box centered at ``position``."""
    return CollisionObject(
        id=object_id,
        frame_id=frame_id,
        primitives=[SolidPrimitive.box(*size)],
        primitive_poses=[sp.SE3(np.eye(3), np.asarray(position, dtype=np.float64))],
    )
