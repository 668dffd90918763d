"""
Marker publishing helpers for motion planning demos.

Markers are queued by the ``publish_*`` methods and sent as one frame by
``trigger``. ``delete_all_markers`` is sent immediately.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from types import ModuleType
from typing import TYPE_CHECKING

import numpy as np
import sophuspy as sp
from numpy.typing import NDArray

from welding_demo import config as cfg
from welding_demo.motion.geometry import joint_path_to_tcp_poses
from welding_demo.motion.trajectory import Trajectory
from welding_demo.planning.scene import PlanningSceneInterface, PrimitiveType
from welding_demo.utils.se3_utils import se3_quat
from welding_demo.visualization.markers import (
    AXIS_LENGTH_FACTOR,
    LINE_SCALE_FACTOR,
    TEXT_SCALE_FACTOR,
    Action,
    Colors,
    Marker,
    MarkerFrame,
    MarkerType,
    Scales,
    scale_value,
)
from welding_demo.visualization.publisher import MarkerPublisher
from welding_demo.visualization.remote_control import RemoteControl

if TYPE_CHECKING:
    from welding_demo.planning.move_group import RobotTrajectory

logger = logging.getLogger(__name__)

RGBA = tuple[float, float, float, float]

# Trajectory lines are downsampled to keep a frame inside one datagram
_MAX_LINE_POINTS = 200

_PRIMITIVE_MARKERS: dict[PrimitiveType, MarkerType] = {
    PrimitiveType.BOX: MarkerType.CUBE,
    PrimitiveType.SPHERE: MarkerType.SPHERE,
    PrimitiveType.CYLINDER: MarkerType.CYLINDER,
}


def _pose_fields(pose: sp.SE3) -> tuple[list[float], list[float]]:
    return pose.translation().tolist(), se3_quat(pose).tolist()


class VisualTools:
    """
    Queue and publish visualization markers, and gate the demo on the operator.

    Args:
        base_frame: Frame all markers are expressed in
        marker_topic: Prefix of every marker namespace
        robot_model: Kinematic model module used for trajectory lines
        publisher: Marker transport (created on first use when omitted)
        remote_control: Operator gating (see ``load_remote_control``)
    """

    def __init__(
        self,
        base_frame: str = cfg.PLANNING_FRAME,
        marker_topic: str = cfg.MARKER_NAMESPACE,
        robot_model: ModuleType | None = None,
        publisher: MarkerPublisher | None = None,
        remote_control: RemoteControl | None = None,
    ):
        self.base_frame = base_frame
        self.marker_topic = marker_topic
        self.robot_model = robot_model
        self._publisher = publisher
        self._remote_control = remote_control

        self._queue: list[Marker] = []
        self._next_id: dict[str, int] = {}
        self._seq = 0

    @property
    def publisher(self) -> MarkerPublisher:
        if self._publisher is None:
            self._publisher = MarkerPublisher()
        return self._publisher

    @property
    def remote_control(self) -> RemoteControl | None:
        return self._remote_control

    @property
    def queued(self) -> int:
        return len(self._queue)

    def _ns(self, kind: str) -> str:
        return f"{self.marker_topic}/{kind}"

    def _new_id(self, ns: str) -> int:
        marker_id = self._next_id.get(ns, 0)
        self._next_id[ns] = marker_id + 1
        return marker_id

    def _send(self, markers: list[Marker], delete_all: bool = False) -> bool:
        frame = MarkerFrame(
            seq=self._seq, stamp=time.time(), markers=markers, delete_all=delete_all
        )
        self._seq += 1
        return self.publisher.publish(frame)

    # -----------------------------
    # Frame control
    # -----------------------------

    def delete_all_markers(self) -> bool:
        """Clear the viewer immediately; queued markers are kept."""
        self._next_id.clear()
        return self._send([], delete_all=True)

    def trigger(self) -> bool:
        """Publish all queued markers as one frame. No-op when nothing is queued."""
        if not self._queue:
            return False
        markers, self._queue = self._queue, []
        logger.debug("Publishing %d markers", len(markers))
        return self._send(markers)

    # -----------------------------
    # Operator gating
    # -----------------------------

    def load_remote_control(self) -> RemoteControl:
        """Create and start the remote control unless one was supplied."""
        if self._remote_control is None:
            self._remote_control = RemoteControl()
            self._remote_control.start()
        logger.info(
            "Remote control ready: press 'next' in the viewer, or Enter in the console"
        )
        return self._remote_control

    def prompt(self, text: str) -> bool:
        """Block until the operator continues. Returns False when stop was requested."""
        if self._remote_control is None:
            logger.error("Remote control not loaded; call load_remote_control() first")
            return False
        return self._remote_control.wait_for_next_step(text)

    # -----------------------------
    # Primitives
    # -----------------------------

    def publish_text(
        self,
        pose: sp.SE3,
        text: str,
        color: RGBA = Colors.WHITE,
        scale: Scales = Scales.MEDIUM,
    ) -> bool:
        ns = self._ns("Text")
        position, orientation = _pose_fields(pose)
        height = scale_value(scale, TEXT_SCALE_FACTOR)
        self._queue.append(
            Marker(
                ns=ns,
                id=self._new_id(ns),
                type=MarkerType.TEXT,
                position=position,
                orientation=orientation,
                scale=[height, height, height],
                color=list(color),
                text=text,
                frame_id=self.base_frame,
            )
        )
        return True

    def _line_strip(
        self, kind: str, points: NDArray[np.float64], color: RGBA, scale: Scales
    ) -> bool:
        if len(points) < 2:
            logger.warning("Skipping %s: needs at least 2 points, got %d", kind, len(points))
            return False
        ns = self._ns(kind)
        width = scale_value(scale, LINE_SCALE_FACTOR)
        self._queue.append(
            Marker(
                ns=ns,
                id=self._new_id(ns),
                type=MarkerType.LINE_STRIP,
                scale=[width, width, width],
                color=list(color),
                points=np.asarray(points, dtype=np.float64).tolist(),
                frame_id=self.base_frame,
            )
        )
        return True

    def publish_path(
        self,
        poses: Sequence[sp.SE3],
        color: RGBA = Colors.RED,
        scale: Scales = Scales.MEDIUM,
    ) -> bool:
        """Line through the positions of ``poses``, in order."""
        points = np.array([p.translation() for p in poses], dtype=np.float64).reshape(-1, 3)
        return self._line_strip("Path", points, color, scale)

    def publish_axis(self, pose: sp.SE3, scale: Scales = Scales.MEDIUM) -> bool:
        """Red/green/blue arrows along the x/y/z axes of ``pose``."""
        ns = self._ns("Axis")
        length = scale_value(scale, AXIS_LENGTH_FACTOR)
        width = scale_value(scale)
        origin = pose.translation()
        R = pose.rotationMatrix()
        for axis, color in enumerate((Colors.RED, Colors.GREEN, Colors.BLUE)):
            tip = origin + R[:, axis] * length
            self._queue.append(
                Marker(
                    ns=ns,
                    id=self._new_id(ns),
                    type=MarkerType.ARROW,
                    position=origin.tolist(),
                    scale=[width, 2.0 * width, 0.0],
                    color=list(color),
                    points=[origin.tolist(), tip.tolist()],
                    frame_id=self.base_frame,
                )
            )
        return True

    def publish_axis_labeled(
        self, pose: sp.SE3, label: str, scale: Scales = Scales.MEDIUM, color: RGBA = Colors.WHITE
    ) -> bool:
        self.publish_axis(pose, scale)
        return self.publish_text(pose, label, color, scale)

    def publish_trajectory_line(
        self,
        trajectory: Trajectory | RobotTrajectory | NDArray[np.float64],
        color: RGBA = Colors.LIME_GREEN,
        scale: Scales = Scales.SMALL,
    ) -> bool:
        """Line through the tool positions visited by a joint trajectory."""
        if isinstance(trajectory, np.ndarray):
            positions = trajectory
        else:
            positions = np.asarray(trajectory.positions, dtype=np.float64)
        if len(positions) > _MAX_LINE_POINTS:
            idx = np.linspace(0, len(positions) - 1, _MAX_LINE_POINTS).round().astype(int)
            positions = positions[idx]
        tcp = joint_path_to_tcp_poses(positions)
        return self._line_strip("Trajectory", tcp[:, :3], color, scale)

    def publish_collision_objects(
        self, scene: PlanningSceneInterface, color: RGBA = Colors.TRANSLUCENT
    ) -> int:
        """Queue one marker per primitive of every world object. Returns the count."""
        ns = self._ns("Collision")
        count = 0
        for obj in scene.get_objects().values():
            for primitive, pose in zip(obj.primitives, obj.primitive_poses):
                dims = primitive.dimensions
                if primitive.type is PrimitiveType.BOX:
                    extent = list(dims)
                elif primitive.type is PrimitiveType.SPHERE:
                    extent = [2.0 * dims[0]] * 3
                else:
                    extent = [2.0 * dims[1], 2.0 * dims[1], dims[0]]
                position, orientation = _pose_fields(pose)
                self._queue.append(
                    Marker(
                        ns=ns,
                        id=self._new_id(ns),
                        type=_PRIMITIVE_MARKERS[primitive.type],
                        action=Action.ADD,
                        position=position,
                        orientation=orientation,
                        scale=extent,
                        color=list(color),
                        text=obj.id,
                        frame_id=obj.frame_id,
                    )
                )
                count += 1
        return count

    def publish_robot_state(
        self, q: NDArray[np.float64], color: RGBA = Colors.GREY
    ) -> bool:
        """Stick figure of the arm: link frames joined by a line, joints as spheres."""
        if self.robot_model is None:
            logger.error("publish_robot_state needs a robot model")
            return False
        points = self.robot_model.fkine_all_positions(q)
        ns = self._ns("Robot")
        size = scale_value(Scales.XLARGE)
        self._queue.append(
            Marker(
                ns=ns,
                id=self._new_id(ns),
                type=MarkerType.SPHERE_LIST,
                scale=[size, size, size],
                color=list(color),
                points=points.tolist(),
                frame_id=self.base_frame,
            )
        )
        return self._line_strip("Robot", points, color, Scales.LARGE)

    def close(self) -> None:
        if self._remote_control is not None:
            self._remote_control.close()
        if self._publisher is not None:
            self._publisher.close()
