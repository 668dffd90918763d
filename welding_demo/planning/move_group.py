"""
MoveGroup-style planning and execution interface for one joint model group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import ModuleType
from typing import Sequence

import numpy as np
import sophuspy as sp
from numpy.typing import ArrayLike, NDArray

from welding_demo import config as cfg
from welding_demo.motion.cartesian import compute_cartesian_path
from welding_demo.motion.trajectory import (
    JointPath,
    ProfileType,
    Trajectory,
    TrajectoryBuilder,
    clamp_scaling,
)
from welding_demo.planning.scene import AttachedCollisionObject, PlanningSceneInterface
from welding_demo.runtime.controller import SimulatedController
from welding_demo.runtime.state import RobotStateMonitor
from welding_demo.utils.errors import MoveItErrorCode, PlanningError, SceneError
from welding_demo.utils.ik import check_limits

logger = logging.getLogger(__name__)


@dataclass
class RobotTrajectory:
    """A timed joint trajectory together with the joints it drives."""

    joint_names: tuple[str, ...]
    trajectory: Trajectory
    fraction: float = 1.0

    def __len__(self) -> int:
        return len(self.trajectory)

    @property
    def duration(self) -> float:
        return self.trajectory.duration

    @property
    def positions(self) -> NDArray[np.float64]:
        return self.trajectory.positions


class MoveGroupInterface:
    """
    Plans and executes motions for a joint model group.

    Planning reads the current state from the state monitor; execution goes
    through the simulated controller. Collision objects in the scene are not
    considered by the planners.
    """

    def __init__(
        self,
        group_name: str,
        robot_model: ModuleType,
        state_monitor: RobotStateMonitor,
        controller: SimulatedController,
        scene: PlanningSceneInterface | None = None,
    ):
        group = robot_model.get_joint_model_group(group_name)
        if group is None:
            raise PlanningError(
                f"Group '{group_name}' was not found in robot model '{robot_model.robot.name}'",
                code=MoveItErrorCode.INVALID_GROUP_NAME,
            )
        if group.variable_count != robot_model.Joint_num:
            raise PlanningError(
                f"Group '{group_name}' has {group.variable_count} joints; "
                f"only full-arm groups can be planned",
                code=MoveItErrorCode.INVALID_GROUP_NAME,
            )

        self._group = group
        self._robot_model = robot_model
        self._robot = robot_model.robot
        self._state = state_monitor
        self._controller = controller
        self._scene = scene if scene is not None else PlanningSceneInterface()

        self._velocity_scaling = cfg.SCALING_FALLBACK
        self._acceleration_scaling = cfg.SCALING_FALLBACK
        self._joint_target: NDArray[np.float64] | None = None

        logger.info(
            "Ready to take commands for planning group %s (tip %s)",
            group.name,
            group.tip_link,
        )

    # -----------------------------
    # Introspection
    # -----------------------------

    def get_name(self) -> str:
        return self._group.name

    def get_planning_frame(self) -> str:
        return self._group.base_link

    def get_end_effector_link(self) -> str:
        return self._group.tip_link

    def get_joint_names(self) -> list[str]:
        return list(self._group.joint_names)

    def get_joint_model_group_names(self) -> list[str]:
        return self._robot_model.joint_model_group_names()

    def get_named_targets(self) -> list[str]:
        return list(self._group.named_states)

    def get_named_target_values(self, name: str) -> NDArray[np.float64] | None:
        state = self._group.named_states.get(name)
        if state is None:
            return None
        return np.array(state, dtype=np.float64)

    def get_current_joint_values(self) -> NDArray[np.float64]:
        return self._state.get_joint_positions()

    def get_current_pose(self) -> sp.SE3:
        """Current pose of the end-effector link in the planning frame."""
        return self._state.get_fkine_se3()

    @property
    def planning_scene(self) -> PlanningSceneInterface:
        return self._scene

    # -----------------------------
    # Scaling
    # -----------------------------

    def set_max_velocity_scaling_factor(self, factor: float) -> None:
        self._velocity_scaling = clamp_scaling(factor, "velocity")

    def set_max_acceleration_scaling_factor(self, factor: float) -> None:
        self._acceleration_scaling = clamp_scaling(factor, "acceleration")

    def get_max_velocity_scaling_factor(self) -> float:
        return self._velocity_scaling

    def get_max_acceleration_scaling_factor(self) -> float:
        return self._acceleration_scaling

    # -----------------------------
    # Targets
    # -----------------------------

    def set_joint_value_target(self, q: ArrayLike) -> bool:
        """Set a joint-space goal. Returns False if it is malformed or out of limits."""
        target = np.asarray(q, dtype=np.float64).ravel()
        if target.shape != (self._group.variable_count,):
            logger.error(
                "Joint target has %d values, group %s has %d joints",
                target.size,
                self._group.name,
                self._group.variable_count,
            )
            return False
        if not check_limits(target, allow_recovery=False):
            logger.error("Joint target is outside the joint limits")
            return False
        self._joint_target = target
        return True

    def set_named_target(self, name: str) -> bool:
        state = self._group.named_states.get(name)
        if state is None:
            logger.error(
                "The requested named target '%s' does not exist (known: %s)",
                name,
                ", ".join(self._group.named_states) or "none",
            )
            return False
        return self.set_joint_value_target(state)

    def clear_pose_targets(self) -> None:
        self._joint_target = None

    # -----------------------------
    # Planning
    # -----------------------------

    def _time_parameterize(
        self, joint_path: JointPath, profile: ProfileType
    ) -> Trajectory:
        builder = TrajectoryBuilder(
            joint_path,
            profile=profile,
            velocity_scaling=self._velocity_scaling,
            acceleration_scaling=self._acceleration_scaling,
        )
        return builder.build()

    def plan(self) -> tuple[MoveItErrorCode, RobotTrajectory | None]:
        """Plan a jerk-limited point-to-point motion to the joint target."""
        if self._joint_target is None:
            logger.error("No joint target set; call set_joint_value_target first")
            return MoveItErrorCode.PLANNING_FAILED, None

        start = self.get_current_joint_values()
        joint_path = JointPath.interpolate(start, self._joint_target, cfg.PATH_SAMPLES)
        trajectory = self._time_parameterize(joint_path, ProfileType.RUCKIG)
        logger.info(
            "Planned joint-space motion: %d samples, %.2fs",
            len(trajectory),
            trajectory.duration,
        )
        return MoveItErrorCode.SUCCESS, RobotTrajectory(
            joint_names=self._group.joint_names, trajectory=trajectory
        )

    def compute_cartesian_path(
        self,
        waypoints: Sequence[sp.SE3],
        eef_step: float = cfg.EEF_STEP,
        jump_threshold: float = cfg.JUMP_THRESHOLD,
    ) -> tuple[float, RobotTrajectory]:
        """
        Compute a straight-line tool path through ``waypoints`` from the current state.

        Returns:
            (fraction, trajectory) where fraction in [0, 1] is the share of
            the path that was achieved; the trajectory covers that share.
        """
        start = self.get_current_joint_values()
        result = compute_cartesian_path(
            self._robot,
            start,
            waypoints,
            eef_step=eef_step,
            jump_threshold=jump_threshold,
        )
        trajectory = self._time_parameterize(result.joint_path, ProfileType.TOPPRA)
        logger.debug(
            "Cartesian trajectory: %d path points, %d samples, %.2fs",
            len(result.joint_path),
            len(trajectory),
            trajectory.duration,
        )
        return result.fraction, RobotTrajectory(
            joint_names=self._group.joint_names,
            trajectory=trajectory,
            fraction=result.fraction,
        )

    # -----------------------------
    # Execution
    # -----------------------------

    def execute(
        self, trajectory: RobotTrajectory, wait: bool = True
    ) -> MoveItErrorCode:
        if tuple(trajectory.joint_names) != self._group.joint_names:
            logger.error(
                "Trajectory joints %s do not match group %s",
                trajectory.joint_names,
                self._group.name,
            )
            return MoveItErrorCode.INVALID_MOTION_PLAN
        return self._controller.execute(trajectory.trajectory, wait=wait)

    def move(self) -> MoveItErrorCode:
        """Plan to the joint target and execute."""
        code, trajectory = self.plan()
        if not code or trajectory is None:
            return code
        return self.execute(trajectory)

    def stop(self) -> None:
        self._controller.stop()

    # -----------------------------
    # Attached objects
    # -----------------------------

    def attach_object(
        self,
        object_id: str,
        link_name: str | None = None,
        touch_links: Sequence[str] = (),
    ) -> bool:
        link = link_name or self.get_end_effector_link()
        try:
            self._scene.attach(object_id, link, tuple(touch_links))
        except SceneError as e:
            logger.error("attach_object failed: %s", e)
            return False
        return True

    def detach_object(self, object_id: str) -> bool:
        try:
            self._scene.detach(object_id, world_pose=self.get_current_pose())
        except SceneError as e:
            logger.error("detach_object failed: %s", e)
            return False
        return True

    def get_attached_objects(self) -> dict[str, AttachedCollisionObject]:
        return self._scene.get_attached_objects()
