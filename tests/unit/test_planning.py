"""Unit tests for MoveGroupInterface and the planning scene."""

import numpy as np
import pytest
import sophuspy as sp

import welding_demo.config as cfg
import welding_demo.robot_model as robot_model
from welding_demo.config import SCALING_FALLBACK
from welding_demo.motion.geometry import generate_weld_ring
from welding_demo.motion import Trajectory
from welding_demo.planning import (
    CollisionObject,
    MoveGroupInterface,
    Operation,
    PlanningSceneInterface,
    PrimitiveType,
    RobotTrajectory,
    SolidPrimitive,
    make_box,
)
from welding_demo.utils.errors import MoveItErrorCode, PlanningError, SceneError

pytestmark = pytest.mark.unit


@pytest.fixture
def scene() -> PlanningSceneInterface:
    return PlanningSceneInterface()


@pytest.fixture
def move_group(state_monitor, controller, scene) -> MoveGroupInterface:
    return MoveGroupInterface("ur_manipulator", robot_model, state_monitor, controller, scene)


class TestMoveGroupSetup:
    def test_unknown_group(self, state_monitor, controller):
        with pytest.raises(PlanningError) as exc_info:
            MoveGroupInterface("arm", robot_model, state_monitor, controller)
        assert exc_info.value.code == MoveItErrorCode.INVALID_GROUP_NAME

    def test_group_without_joints(self, state_monitor, controller):
        with pytest.raises(PlanningError):
            MoveGroupInterface("endeffector", robot_model, state_monitor, controller)

    def test_introspection(self, move_group):
        assert move_group.get_name() == "ur_manipulator"
        assert move_group.get_planning_frame() == "base_link"
        assert move_group.get_end_effector_link() == "tool0"
        assert move_group.get_joint_names() == list(robot_model.JOINT_NAMES)
        assert set(move_group.get_joint_model_group_names()) == {"ur_manipulator", "endeffector"}
        assert "ready" in move_group.get_named_targets()

    def test_current_state(self, move_group, ready_q):
        assert np.allclose(move_group.get_current_joint_values(), ready_q)
        assert np.allclose(move_group.get_current_pose().matrix(), robot_model.fkine(ready_q))


class TestScaling:
    def test_default(self, move_group):
        assert move_group.get_max_velocity_scaling_factor() == SCALING_FALLBACK
        assert move_group.get_max_acceleration_scaling_factor() == SCALING_FALLBACK

    def test_clamped(self, move_group):
        move_group.set_max_velocity_scaling_factor(1.5)
        move_group.set_max_acceleration_scaling_factor(0.4)
        assert move_group.get_max_velocity_scaling_factor() == 1.0
        assert move_group.get_max_acceleration_scaling_factor() == 0.4


class TestTargets:
    def test_named_target(self, move_group):
        assert move_group.set_named_target("home")
        assert not move_group.set_named_target("nowhere")

    def test_named_target_values(self, move_group):
        assert np.allclose(
            move_group.get_named_target_values("home"), robot_model._named_states["home"]
        )
        assert move_group.get_named_target_values("nowhere") is None

    def test_ring_start_state_sits_on_first_waypoint(self, move_group):
        """The named ring start puts the flange, facing up, on the default ring's pt0."""
        q = move_group.get_named_target_values(cfg.RING_START_STATE)
        first = generate_weld_ring(cfg.RING_CENTER, cfg.RING_RADIUS, cfg.RING_ANGLE_STEP)[0]

        T = robot_model.fkine(q)
        assert np.allclose(T[:3, 3], first.translation(), atol=1e-3)
        assert np.allclose(T[:3, :3], first.rotationMatrix(), atol=1e-3)
        assert np.allclose(T[:3, 2], [0.0, 0.0, 1.0], atol=1e-3)

    def test_joint_target_validation(self, move_group, ready_q):
        assert not move_group.set_joint_value_target(ready_q[:5])
        beyond = ready_q.copy()
        beyond[3] = 10.0
        assert not move_group.set_joint_value_target(beyond)
        assert move_group.set_joint_value_target(ready_q + 0.1)

    def test_plan_without_target(self, move_group):
        code, trajectory = move_group.plan()
        assert code == MoveItErrorCode.PLANNING_FAILED
        assert trajectory is None

    def test_plan_and_execute(self, move_group, state_monitor, ready_q):
        goal = ready_q + np.array([0.1, -0.05, 0.05, 0.0, 0.1, -0.1])
        move_group.set_max_velocity_scaling_factor(1.0)
        move_group.set_max_acceleration_scaling_factor(1.0)
        assert move_group.set_joint_value_target(goal)

        code, trajectory = move_group.plan()
        assert code == MoveItErrorCode.SUCCESS
        assert isinstance(trajectory, RobotTrajectory)
        assert trajectory.joint_names == robot_model.JOINT_NAMES
        assert trajectory.duration > 0

        assert move_group.execute(trajectory) == MoveItErrorCode.SUCCESS
        assert np.allclose(state_monitor.get_joint_positions(), goal, atol=1e-6)

    def test_move(self, move_group, state_monitor, ready_q):
        move_group.set_max_velocity_scaling_factor(1.0)
        move_group.set_joint_value_target(ready_q - 0.05)
        assert move_group.move() == MoveItErrorCode.SUCCESS
        assert np.allclose(state_monitor.get_joint_positions(), ready_q - 0.05, atol=1e-6)


class TestCartesianPath:
    def test_straight_line_executes(self, move_group, ready_pose):
        target = sp.SE3(ready_pose.rotationMatrix(), ready_pose.translation() + [0.0, 0.0, 0.04])

        fraction, trajectory = move_group.compute_cartesian_path([target], 0.01, 0.0)

        assert fraction == pytest.approx(1.0)
        assert trajectory.fraction == fraction
        assert np.allclose(trajectory.positions[0], move_group.get_current_joint_values())

        assert move_group.execute(trajectory) == MoveItErrorCode.SUCCESS
        reached = move_group.get_current_pose().translation()
        assert np.allclose(reached, target.translation(), atol=1e-4)

    def test_unreachable_path_reports_zero(self, move_group, ready_pose):
        far = sp.SE3(ready_pose.rotationMatrix(), np.array([5.0, 0.0, 0.5]))
        fraction, trajectory = move_group.compute_cartesian_path([far], 0.5, 0.0)
        assert fraction < 1.0
        assert len(trajectory) >= 1

    def test_execute_rejects_foreign_joints(self, move_group, ready_q):
        traj = RobotTrajectory(
            joint_names=("a", "b", "c", "d", "e", "f"),
            trajectory=Trajectory(positions=ready_q.reshape(1, 6), duration=0.0),
        )
        assert move_group.execute(traj) == MoveItErrorCode.INVALID_MOTION_PLAN


class TestAttachedObjects:
    def test_attach_and_detach(self, move_group, scene):
        scene.add_collision_objects([make_box("torch", (0.02, 0.02, 0.1), (0.0, 0.0, 0.05), "tool0")])

        assert move_group.attach_object("torch")
        attached = move_group.get_attached_objects()
        assert attached["torch"].link_name == "tool0"

        assert move_group.detach_object("torch")
        obj = scene.get_objects()["torch"]
        assert obj.frame_id == "base_link"
        expected = move_group.get_current_pose() * sp.SE3(np.eye(3), [0.0, 0.0, 0.05])
        assert np.allclose(obj.primitive_poses[0].matrix(), expected.matrix())

    def test_attach_unknown(self, move_group):
        assert not move_group.attach_object("ghost")
        assert not move_group.detach_object("ghost")


class TestSolidPrimitive:
    def test_constructors(self):
        assert SolidPrimitive.box(1, 2, 3).dimensions == (1.0, 2.0, 3.0)
        assert SolidPrimitive.sphere(0.5).type is PrimitiveType.SPHERE
        cyl = SolidPrimitive.cylinder(0.4, 0.1)
        assert cyl.dimensions[SolidPrimitive.CYLINDER_HEIGHT] == 0.4
        assert cyl.dimensions[SolidPrimitive.CYLINDER_RADIUS] == 0.1

    @pytest.mark.parametrize(
        "ptype,dims",
        [
            (PrimitiveType.BOX, (1.0, 1.0)),
            (PrimitiveType.BOX, (1.0, 0.0, 1.0)),
            (PrimitiveType.SPHERE, (-0.1,)),
            (PrimitiveType.CYLINDER, (0.3,)),
        ],
    )
    def test_invalid_dimensions(self, ptype, dims):
        with pytest.raises(SceneError):
            SolidPrimitive(ptype, dims)


class TestPlanningScene:
    def test_add_and_query(self, scene):
        box = make_box("box1", (0.1, 1.5, 0.5), (0.48, 0.0, 0.25))
        scene.add_collision_objects([box])

        assert scene.get_known_object_names() == ["box1"]
        assert scene.get_objects(["box1", "other"]) == {"box1": box}
        assert np.allclose(box.primitive_poses[0].translation(), [0.48, 0.0, 0.25])

    def test_add_replaces_same_id(self, scene):
        scene.apply_collision_object(make_box("b", (1, 1, 1), (0, 0, 0)))
        scene.apply_collision_object(make_box("b", (2, 2, 2), (0, 0, 0)))
        assert scene.get_objects()["b"].primitives[0].dimensions == (2.0, 2.0, 2.0)

    def test_remove(self, scene):
        scene.add_collision_objects([make_box("b", (1, 1, 1), (0, 0, 0))])
        scene.remove_collision_objects(["b"])
        assert scene.get_known_object_names() == []

    def test_remove_unknown(self, scene):
        with pytest.raises(SceneError):
            scene.remove_collision_objects(["missing"])

    def test_object_validation(self, scene):
        with pytest.raises(SceneError):
            scene.apply_collision_object(CollisionObject(id="empty"))
        with pytest.raises(SceneError):
            scene.apply_collision_object(
                CollisionObject(id="x", primitives=[SolidPrimitive.sphere(0.1)], primitive_poses=[])
            )
        with pytest.raises(SceneError):
            scene.apply_collision_object(CollisionObject(id="", operation=Operation.REMOVE))

    def test_attached_objects_are_known(self, scene):
        scene.add_collision_objects([make_box("b", (1, 1, 1), (0, 0, 0))])
        scene.attach("b", "tool0")

        assert scene.get_known_object_names() == ["b"]
        assert scene.get_objects() == {}
        assert list(scene.get_attached_objects()) == ["b"]

        with pytest.raises(SceneError):
            scene.detach("other")
