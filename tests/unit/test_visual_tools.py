"""Unit tests for VisualTools marker queuing and publishing."""

import numpy as np
import pytest

import welding_demo.robot_model as robot_model
from welding_demo.motion import generate_weld_ring
from welding_demo.planning import PlanningSceneInterface, SolidPrimitive, CollisionObject, make_box
from welding_demo.utils.se3_utils import se3_from_trans
from welding_demo.visualization.markers import Colors, MarkerType, Scales, scale_value, TEXT_SCALE_FACTOR
from welding_demo.visualization.remote_control import RemoteControl
from welding_demo.visualization.visual_tools import VisualTools

pytestmark = pytest.mark.unit


class RecordingPublisher:
    """Collects published frames instead of sending them."""

    def __init__(self):
        self.frames = []
        self.closed = False

    def publish(self, frame):
        self.frames.append(frame)
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def vt(publisher):
    return VisualTools("base_link", "demo", robot_model, publisher=publisher)


class TestFrames:
    def test_delete_all_is_immediate(self, vt, publisher):
        vt.publish_text(se3_from_trans(0, 0, 1), "queued")
        assert vt.delete_all_markers()

        assert len(publisher.frames) == 1
        assert publisher.frames[0].delete_all
        assert publisher.frames[0].markers == []
        assert vt.queued == 1

    def test_trigger_publishes_queue_once(self, vt, publisher):
        vt.publish_text(se3_from_trans(0, 0, 1), "a")
        vt.publish_text(se3_from_trans(0, 0, 2), "b")

        assert vt.trigger()
        assert not vt.trigger()

        assert len(publisher.frames) == 1
        frame = publisher.frames[0]
        assert [m.text for m in frame.markers] == ["a", "b"]
        assert [m.id for m in frame.markers] == [0, 1]
        assert not frame.delete_all

    def test_sequence_numbers_increase(self, vt, publisher):
        vt.delete_all_markers()
        vt.publish_text(se3_from_trans(0, 0, 1), "x")
        vt.trigger()
        assert [f.seq for f in publisher.frames] == [0, 1]

    def test_delete_all_restarts_ids(self, vt, publisher):
        vt.publish_text(se3_from_trans(0, 0, 1), "x")
        vt.trigger()
        vt.delete_all_markers()
        vt.publish_text(se3_from_trans(0, 0, 1), "y")
        vt.trigger()
        assert publisher.frames[-1].markers[0].id == 0


class TestPrimitives:
    def test_text(self, vt, publisher):
        vt.publish_text(se3_from_trans(0, 0, 1.0), "Cartesian_Path", Colors.WHITE, Scales.XLARGE)
        vt.trigger()
        m = publisher.frames[0].markers[0]

        assert m.type == MarkerType.TEXT
        assert m.ns == "demo/Text"
        assert m.position == [0.0, 0.0, 1.0]
        assert m.scale[2] == pytest.approx(scale_value(Scales.XLARGE, TEXT_SCALE_FACTOR))
        assert m.color == list(Colors.WHITE)
        assert m.frame_id == "base_link"

    def test_path_through_waypoints(self, vt, publisher):
        ring = generate_weld_ring((0.2, 0.0, 0.8), 0.2, 0.5)
        assert vt.publish_path(ring, Colors.LIME_GREEN, Scales.SMALL)
        vt.trigger()
        m = publisher.frames[0].markers[0]

        assert m.type == MarkerType.LINE_STRIP
        assert len(m.points) == 13
        assert np.allclose(m.points[0], [0.4, 0.0, 0.8])
        assert m.color == list(Colors.LIME_GREEN)

    def test_path_needs_two_points(self, vt):
        assert not vt.publish_path([se3_from_trans(0, 0, 0)])
        assert vt.queued == 0

    def test_axis_labeled(self, vt, publisher):
        pose = se3_from_trans(0.1, 0.2, 0.3)
        vt.publish_axis_labeled(pose, "pt0", Scales.SMALL)
        vt.trigger()
        markers = publisher.frames[0].markers

        arrows = [m for m in markers if m.type == MarkerType.ARROW]
        texts = [m for m in markers if m.type == MarkerType.TEXT]
        assert len(arrows) == 3
        assert [t.text for t in texts] == ["pt0"]
        # x axis arrow points along +x of the pose
        start, end = np.array(arrows[0].points)
        assert np.allclose(start, [0.1, 0.2, 0.3])
        direction = end - start
        assert direction[0] > 0 and np.allclose(direction[1:], 0.0)

    def test_trajectory_line_downsampled(self, vt, publisher, ready_q):
        positions = np.linspace(ready_q, ready_q + 0.5, 500)

        assert vt.publish_trajectory_line(positions)
        vt.trigger()
        m = publisher.frames[0].markers[0]

        assert m.type == MarkerType.LINE_STRIP
        assert len(m.points) == 200
        assert np.allclose(m.points[-1], robot_model.fkine(positions[-1])[:3, 3])

    def test_collision_objects(self, vt, publisher):
        scene = PlanningSceneInterface()
        scene.add_collision_objects(
            [
                make_box("box1", (0.1, 1.5, 0.5), (0.48, 0.0, 0.25)),
                CollisionObject(
                    id="post",
                    primitives=[SolidPrimitive.cylinder(0.4, 0.05)],
                    primitive_poses=[se3_from_trans(0.0, 0.5, 0.2)],
                ),
            ]
        )

        assert vt.publish_collision_objects(scene) == 2
        vt.trigger()
        cube, cylinder = publisher.frames[0].markers

        assert cube.type == MarkerType.CUBE
        assert cube.scale == [0.1, 1.5, 0.5]
        assert cube.text == "box1"
        assert cylinder.type == MarkerType.CYLINDER
        assert cylinder.scale == pytest.approx([0.1, 0.1, 0.4])

    def test_robot_state(self, vt, publisher, ready_q):
        assert vt.publish_robot_state(ready_q)
        vt.trigger()
        types = [m.type for m in publisher.frames[0].markers]
        assert types == [MarkerType.SPHERE_LIST, MarkerType.LINE_STRIP]
        assert len(publisher.frames[0].markers[0].points) == robot_model.Joint_num + 1


class TestPrompt:
    def test_prompt_without_remote_control(self, vt):
        assert not vt.prompt("next?")

    def test_prompt_uses_remote_control(self, publisher):
        rc = RemoteControl(console=False, listen=False, autonomous=True)
        vt = VisualTools(publisher=publisher, remote_control=rc)

        assert vt.load_remote_control() is rc
        assert vt.prompt("next?")
        rc.stop()
        assert not vt.prompt("next?")

    def test_close_releases_resources(self, publisher):
        rc = RemoteControl(console=False, listen=False)
        vt = VisualTools(publisher=publisher, remote_control=rc)
        vt.close()
        assert publisher.closed
