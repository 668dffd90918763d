"""Command-line entry point for the welding demo."""

from __future__ import annotations

import argparse
import logging
import signal
from collections.abc import Sequence

import numpy as np
import sophuspy as sp

import welding_demo.config as cfg
import welding_demo.robot_model as robot_model
from welding_demo.config import TRACE
from welding_demo.motion.geometry import generate_weld_ring
from welding_demo.planning.move_group import MoveGroupInterface
from welding_demo.planning.scene import PlanningSceneInterface, make_box
from welding_demo.runtime.controller import SimulatedController
from welding_demo.runtime.state import RobotStateMonitor
from welding_demo.utils.errors import WeldingDemoError
from welding_demo.utils.ik import solve_ik
from welding_demo.utils.se3_utils import se3_from_trans
from welding_demo.visualization.markers import Colors, Scales
from welding_demo.visualization.publisher import MarkerPublisher
from welding_demo.visualization.remote_control import RemoteControl
from welding_demo.visualization.visual_tools import VisualTools

logger = logging.getLogger("welding_demo.cli")

PLAN_PROMPT = "Press 'next' in the marker viewer to create a plan for a test trajectory"
EXECUTE_PROMPT = "Press 'next' in the marker viewer to execute the trajectory"

# Workpiece stand-in shown in front of the arm
WORKPIECE_ID = "box1"
WORKPIECE_SIZE = (0.1, 1.5, 0.5)
WORKPIECE_POSITION = (0.48, 0.0, 0.25)


class WeldingDemo:
    """
    The demo node: plans the weld ring, shows it, and executes it on request.

    ``setup`` builds the planning stack and publishes the title; each
    ``run_cycle`` is one plan/visualize/execute round gated by the operator.
    """

    def __init__(
        self,
        group: str = cfg.PLANNING_GROUP,
        center: Sequence[float] = cfg.RING_CENTER,
        radius: float = cfg.RING_RADIUS,
        angle_step: float = cfg.RING_ANGLE_STEP,
        eef_step: float = cfg.EEF_STEP,
        jump_threshold: float = cfg.JUMP_THRESHOLD,
        realtime: bool = True,
        workpiece: bool = False,
        velocity_scaling: float | None = None,
        acceleration_scaling: float | None = None,
        publisher: MarkerPublisher | None = None,
        remote_control: RemoteControl | None = None,
    ):
        self.group = group
        self.center = np.asarray(center, dtype=np.float64)
        self.radius = radius
        self.angle_step = angle_step
        self.eef_step = eef_step
        self.jump_threshold = jump_threshold
        self.realtime = realtime
        self.workpiece = workpiece
        self.velocity_scaling = velocity_scaling
        self.acceleration_scaling = acceleration_scaling

        self.text_pose = se3_from_trans(0.0, 0.0, 1.0)

        self.state = RobotStateMonitor(cfg.STANDBY_ANGLES_RAD)
        self.controller = SimulatedController(self.state, realtime=realtime)
        self.scene = PlanningSceneInterface()
        self.visual_tools = VisualTools(
            cfg.PLANNING_FRAME,
            cfg.MARKER_NAMESPACE,
            robot_model,
            publisher=publisher,
            remote_control=remote_control,
        )
        self.move_group: MoveGroupInterface | None = None
        self.cycles_completed = 0
        self.last_fraction = 0.0

    def setup(self) -> None:
        """Start the controller, create the planning interface and show the title.

        Raises:
            PlanningError: if the planning group does not exist
        """
        self.controller.start()
        move_group = MoveGroupInterface(
            self.group, robot_model, self.state, self.controller, self.scene
        )
        if self.velocity_scaling is not None:
            move_group.set_max_velocity_scaling_factor(self.velocity_scaling)
        if self.acceleration_scaling is not None:
            move_group.set_max_acceleration_scaling_factor(self.acceleration_scaling)
        self.move_group = move_group

        if self.workpiece:
            self.scene.add_collision_objects(
                [make_box(WORKPIECE_ID, WORKPIECE_SIZE, WORKPIECE_POSITION)]
            )

        vt = self.visual_tools
        vt.delete_all_markers()
        vt.load_remote_control()
        vt.publish_text(self.text_pose, "MoveGroupInterface_Demo", Colors.WHITE, Scales.XLARGE)
        vt.publish_collision_objects(self.scene)
        vt.trigger()

        logger.info("Planning frame: %s", move_group.get_planning_frame())
        logger.info("End effector link: %s", move_group.get_end_effector_link())
        logger.info(
            "Available Planning Groups: %s", ", ".join(move_group.get_joint_model_group_names())
        )

    def run_cycle(self) -> bool:
        """One plan/show/execute round. Returns False when the operator stopped the demo."""
        move_group = self.move_group
        if move_group is None:
            raise RuntimeError("WeldingDemo.setup() must be called first")
        vt = self.visual_tools

        if not vt.prompt(PLAN_PROMPT):
            return False

        waypoints = generate_weld_ring(self.center, self.radius, self.angle_step, cfg.RING_FORWARD)
        self.move_to_ring_start(waypoints[0])
        fraction, trajectory = move_group.compute_cartesian_path(
            waypoints, self.eef_step, self.jump_threshold
        )
        self.last_fraction = fraction
        logger.info("Visualizing plan for a Cartesian path (%.2f%% achieved)", fraction * 100.0)

        vt.delete_all_markers()
        vt.publish_text(self.text_pose, "Cartesian_Path", Colors.WHITE, Scales.XLARGE)
        vt.publish_path(waypoints, Colors.LIME_GREEN, Scales.SMALL)
        for i, waypoint in enumerate(waypoints):
            vt.publish_axis_labeled(waypoint, f"pt{i}", Scales.SMALL)
        vt.publish_collision_objects(self.scene)
        vt.trigger()

        if not vt.prompt(EXECUTE_PROMPT):
            return False

        code = move_group.execute(trajectory)
        if code:
            logger.info("Executed %d samples in %.2fs", len(trajectory), trajectory.duration)
        else:
            logger.error("Trajectory execution failed: %s", code.name)

        vt.delete_all_markers()
        vt.trigger()
        self.cycles_completed += 1
        return True

    def move_to_ring_start(self, first: sp.SE3) -> bool:
        """
        Move the arm onto the first ring waypoint before planning the ring.

        The waypoint is solved from the named ring start state so every cycle
        begins on the same IK branch, wherever the previous one stopped. If it
        cannot be solved the arm goes to the named state itself.
        """
        move_group = self.move_group
        assert move_group is not None
        name = cfg.RING_START_STATE
        seed = move_group.get_named_target_values(name)
        if seed is None:
            logger.warning("Group %s has no named state '%s'; planning from here", self.group, name)
            return False

        result = solve_ik(robot_model.robot, first, seed, quiet_logging=True)
        if result.success:
            target = result.q
        else:
            logger.warning("First ring waypoint not solvable from '%s': %s", name, result.violations)
            target = seed
        if np.max(np.abs(move_group.get_current_joint_values() - target)) < 1e-6:
            return True
        if not move_group.set_joint_value_target(target):
            return False

        logger.info("Moving to the start of the weld ring")
        code = move_group.move()
        if not code:
            logger.error("Moving to the ring start failed: %s", code.name)
            return False
        return True

    def run(self, cycles: int = 0) -> int:
        """Run ``cycles`` rounds (0 = until stopped). Returns the number completed."""
        while cycles <= 0 or self.cycles_completed < cycles:
            try:
                if not self.run_cycle():
                    logger.info("Stop requested, leaving demo loop")
                    break
            except WeldingDemoError as e:
                logger.error("Demo cycle failed (%s): %s", e.code.name, e)
        return self.cycles_completed

    def shutdown(self) -> None:
        self.controller.shutdown()
        self.visual_tools.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Welding demo: circular weld path on a UR5")
    parser.add_argument("--group", default=cfg.PLANNING_GROUP, help="Planning group")
    parser.add_argument(
        "--center",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        default=list(cfg.RING_CENTER),
        help="Weld ring center in meters",
    )
    parser.add_argument("--radius", type=float, default=cfg.RING_RADIUS, help="Ring radius (m)")
    parser.add_argument(
        "--angle-step", type=float, default=cfg.RING_ANGLE_STEP, help="Waypoint spacing (rad)"
    )
    parser.add_argument(
        "--eef-step", type=float, default=cfg.EEF_STEP, help="Cartesian interpolation step (m)"
    )
    parser.add_argument(
        "--jump-threshold",
        type=float,
        default=cfg.JUMP_THRESHOLD,
        help="Joint-space jump threshold (0 disables)",
    )
    parser.add_argument(
        "--velocity-scaling", type=float, help="Max velocity scaling factor (0, 1]"
    )
    parser.add_argument(
        "--acceleration-scaling", type=float, help="Max acceleration scaling factor (0, 1]"
    )
    parser.add_argument(
        "--cycles", type=int, default=0, help="Number of plan/execute cycles (0 = forever)"
    )
    parser.add_argument(
        "--autonomous", action="store_true", help="Do not wait for 'next' at prompts"
    )
    parser.add_argument(
        "--no-console", action="store_true", help="Do not read prompts from the console"
    )
    parser.add_argument(
        "--remote-port",
        type=int,
        default=cfg.REMOTE_CONTROL_PORT,
        help="UDP port for next/continue/stop commands",
    )
    parser.add_argument(
        "--workpiece", action="store_true", help="Add the workpiece box to the planning scene"
    )
    parser.add_argument(
        "--fast", action="store_true", help="Execute without real-time pacing"
    )

    # Verbose logging options
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Enable quiet logging (WARNING level)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set specific log level",
    )
    return parser


def resolve_log_level(args: argparse.Namespace) -> int:
    # Precedence:
    #   1) Explicit --log-level
    #   2) Verbose / quiet flags
    #   3) Environment-driven TRACE (WELDING_DEMO_TRACE=1)
    #   4) Default INFO
    if args.log_level:
        if args.log_level == "TRACE":
            cfg.TRACE_ENABLED = True
            return TRACE
        return getattr(logging, args.log_level)
    if args.verbose >= 3:
        cfg.TRACE_ENABLED = True
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    if cfg.TRACE_ENABLED:
        return TRACE
    return logging.INFO


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the demo."""
    args = build_parser().parse_args(argv)

    log_level = resolve_log_level(args)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    third_party_log_level = log_level if log_level >= logging.INFO else logging.INFO
    # Silence toppra's verbose debug output
    for name in ("toppra", "numba", "matplotlib"):
        logging.getLogger(name).setLevel(third_party_log_level)

    # Pre-compile numba JIT functions to avoid mid-loop compilation stalls
    from welding_demo.utils.warmup import warmup_jit

    warmup_jit()

    demo: WeldingDemo | None = None

    def handle_sigterm(signum, frame):
        """Handle SIGTERM signal for graceful shutdown."""
        logger.info("Received SIGTERM, shutting down...")
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, handle_sigterm)

    try:
        remote_control = RemoteControl(
            port=args.remote_port,
            console=not args.no_console,
            autonomous=args.autonomous,
        )
        remote_control.start()
        demo = WeldingDemo(
            group=args.group,
            center=args.center,
            radius=args.radius,
            angle_step=args.angle_step,
            eef_step=args.eef_step,
            jump_threshold=args.jump_threshold,
            realtime=not args.fast,
            workpiece=args.workpiece,
            velocity_scaling=args.velocity_scaling,
            acceleration_scaling=args.acceleration_scaling,
            remote_control=remote_control,
        )
        demo.setup()
    except (WeldingDemoError, OSError) as e:
        logger.error("Failed to start demo: %s", e)
        if demo is not None:
            demo.shutdown()
        return 1

    try:
        completed = demo.run(args.cycles)
        logger.info("Demo finished after %d cycle(s)", completed)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        demo.shutdown()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
