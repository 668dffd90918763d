"""
Time parameterization of joint paths.

A ``JointPath`` is an ordered list of joint configurations with no timing;
Cartesian planning produces one by chaining IK, a joint goal by straight
interpolation. ``TrajectoryBuilder`` turns it into a ``Trajectory``: joint
positions sampled every control tick, which the controller plays back one
sample per tick.

Profiles:
  TOPPRA     time-optimal traversal of every path point (toppra)
  RUCKIG     jerk-limited point-to-point move, start to end only (ruckig)
  TRAPEZOID  per-joint trapezoidal velocity profiles, start to end (interpolatepy)
  LINEAR     uniform interpolation of the path, slowed where limits require
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np
import sophuspy as sp
from numpy.typing import NDArray
from ruckig import InputParameter, OutputParameter, Result, Ruckig

import toppra as ta
import toppra.algorithm as algo
import toppra.constraint as constraint

import welding_demo.robot_model as robot_model
from welding_demo.config import INTERVAL_S, LIMITS, SCALING_FALLBACK
from welding_demo.utils.errors import IKError
from welding_demo.utils.ik import solve_ik

logger = logging.getLogger(__name__)

# Joints that move less than this are held still by the trapezoid profile
_STILL_RAD = 1e-9


def clamp_scaling(value: float | None, name: str) -> float:
    """Bring a velocity/acceleration scaling factor into (0, 1].

    ``None`` means full speed. Values above 1 are limited to 1; values at or
    below 0 fall back to ``SCALING_FALLBACK``.
    """
    if value is None:
        return 1.0
    if value > 1.0:
        logger.warning("Limiting max_%s_scaling_factor (%.2f) to 1.0.", name, value)
        return 1.0
    if value <= 0.0:
        if value < 0.0:
            logger.warning(
                "max_%s_scaling_factor < 0.0! Setting to default: %.2f.",
                name,
                SCALING_FALLBACK,
            )
        return SCALING_FALLBACK
    return float(value)


class ProfileType(Enum):
    TOPPRA = "toppra"
    RUCKIG = "ruckig"
    TRAPEZOID = "trapezoid"
    LINEAR = "linear"

    @classmethod
    def from_string(cls, name: str) -> ProfileType:
        """Case-insensitive lookup; ``"none"`` means LINEAR, unknown names TOPPRA."""
        key = name.strip().upper()
        if key == "NONE":
            return cls.LINEAR
        if key in cls.__members__:
            return cls[key]
        logger.warning("Unknown profile type '%s', using TOPPRA", name)
        return cls.TOPPRA


@dataclass
class JointPath:
    """Untimed joint-space path, ``positions`` of shape (N, n_joints) in radians."""

    positions: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.positions)

    def __getitem__(self, idx: int) -> NDArray[np.float64]:
        return self.positions[idx]

    @property
    def n_joints(self) -> int:
        return int(self.positions.shape[1])

    @classmethod
    def from_poses(
        cls,
        poses: Sequence[sp.SE3],
        seed_q: NDArray[np.float64],
        quiet_logging: bool = True,
    ) -> JointPath:
        """
        Solve IK for each pose in turn, seeding every solve with the previous answer.

        Raises:
            IKError: on the first pose without a solution
        """
        q = np.asarray(seed_q, dtype=np.float64)
        solved: list[NDArray[np.float64]] = []
        for i, pose in enumerate(poses):
            result = solve_ik(robot_model.robot, pose, q, quiet_logging=quiet_logging)
            if not result.success:
                reason = f" Reason: {result.violations}" if result.violations else ""
                raise IKError(f"Cartesian path point {i}/{len(poses)} is unreachable.{reason}")
            q = result.q
            solved.append(q)
        if not solved:
            return cls(positions=np.empty((0, len(q)), dtype=np.float64))
        return cls(positions=np.vstack(solved))

    @classmethod
    def interpolate(
        cls,
        start_rad: NDArray[np.float64],
        end_rad: NDArray[np.float64],
        n_samples: int,
    ) -> JointPath:
        """Straight line in joint space with ``n_samples`` points (at least 2)."""
        start = np.asarray(start_rad, dtype=np.float64)
        end = np.asarray(end_rad, dtype=np.float64)
        s = np.linspace(0.0, 1.0, max(2, n_samples))[:, None]
        return cls(positions=start + s * (end - start))

    def append(self, other: JointPath) -> JointPath:
        return JointPath(positions=np.vstack([self.positions, other.positions]))

    def sample_many(self, s_values: NDArray[np.float64]) -> NDArray[np.float64]:
        """Positions at normalized arc parameters ``s_values`` (clipped to [0, 1]).

        Points are treated as evenly spaced in ``s`` and joined linearly.
        """
        s = np.clip(np.asarray(s_values, dtype=np.float64), 0.0, 1.0)
        last = len(self.positions) - 1
        if last < 1:
            return np.repeat(self.positions[:1], len(s), axis=0)
        x = s * last
        lo = np.minimum(x.astype(np.intp), last - 1)
        w = (x - lo)[:, None]
        return (1.0 - w) * self.positions[lo] + w * self.positions[lo + 1]

    def sample(self, s: float) -> NDArray[np.float64]:
        return self.sample_many(np.array([s]))[0]


@dataclass
class Trajectory:
    """Joint positions at every control tick, ``dt`` apart, lasting ``duration`` seconds."""

    positions: NDArray[np.float64]
    duration: float
    dt: float = INTERVAL_S

    def __len__(self) -> int:
        return len(self.positions)

    def __getitem__(self, idx: int) -> NDArray[np.float64]:
        return self.positions[idx]

    @property
    def times(self) -> NDArray[np.float64]:
        """Sample times; the last one is ``duration``."""
        n = len(self.positions)
        t = np.arange(n, dtype=np.float64) * self.dt
        if n >= 2:
            t[-1] = max(self.duration, t[-2])
        return t

    @property
    def velocities(self) -> NDArray[np.float64]:
        """Finite-difference joint velocities (rad/s)."""
        if len(self.positions) < 2:
            return np.zeros_like(self.positions)
        return np.gradient(self.positions, self.dt, axis=0)

    @property
    def final_position(self) -> NDArray[np.float64]:
        return self.positions[-1].copy()


class TrajectoryBuilder:
    """
    Time-parameterizes a JointPath under the robot's joint limits.

    Velocity limits are scaled by ``velocity_scaling``; acceleration and
    jerk limits by ``acceleration_scaling``. A ``duration`` longer than the
    fastest feasible one slows the motion down to it.
    """

    # Headroom for rounding inside toppra/ruckig
    LIMIT_MARGIN = 0.99

    def __init__(
        self,
        joint_path: JointPath,
        profile: ProfileType | str = ProfileType.TOPPRA,
        velocity_scaling: float | None = None,
        acceleration_scaling: float | None = None,
        duration: float | None = None,
        dt: float = INTERVAL_S,
    ):
        self.joint_path = joint_path
        if isinstance(profile, str):
            profile = ProfileType.from_string(profile)
        self.profile = profile
        self.velocity_scaling = clamp_scaling(velocity_scaling, "velocity")
        self.acceleration_scaling = clamp_scaling(acceleration_scaling, "acceleration")
        self.duration = duration if duration and duration > 0 else None
        self.dt = dt

        hard = LIMITS.joint.hard
        self.v_max = hard.velocity * (self.velocity_scaling * self.LIMIT_MARGIN)
        self.a_max = hard.acceleration * (self.acceleration_scaling * self.LIMIT_MARGIN)
        self.j_max = hard.jerk * (self.acceleration_scaling * self.LIMIT_MARGIN)

    @property
    def n_joints(self) -> int:
        return self.joint_path.n_joints

    def build(self) -> Trajectory:
        if len(self.joint_path) < 2:
            return Trajectory(self.joint_path.positions[:1].copy(), 0.0, self.dt)
        builders = {
            ProfileType.TOPPRA: self._build_toppra,
            ProfileType.RUCKIG: self._build_ruckig,
            ProfileType.TRAPEZOID: self._build_trapezoid,
            ProfileType.LINEAR: self._build_linear,
        }
        return builders[self.profile]()

    # -----------------------------
    # TOPP-RA
    # -----------------------------

    def _toppra_trajectory(self):
        positions = self.joint_path.positions
        path = ta.SplineInterpolator(np.linspace(0.0, 1.0, len(positions)), positions)
        constraints = [
            constraint.JointVelocityConstraint(np.column_stack([-self.v_max, self.v_max])),
            constraint.JointAccelerationConstraint(np.column_stack([-self.a_max, self.a_max])),
        ]
        # Fixed uniform grid; automatic selection bunches gridpoints and skews TOPPRAsd
        grid = np.linspace(0.0, 1.0, 3 * len(positions))

        if self.duration is not None:
            sd = algo.TOPPRAsd(constraints, path, gridpoints=grid)
            sd.set_desired_duration(self.duration)
            result = sd.compute_trajectory()
            if result is not None:
                return result
            logger.warning("TOPPRAsd failed, trying time-optimal TOPPRA")
        return algo.TOPPRA(constraints, path, gridpoints=grid).compute_trajectory()

    def _build_toppra(self) -> Trajectory:
        try:
            jnt_traj = self._toppra_trajectory()
        except Exception as e:
            logger.warning("TOPPRA failed: %s. Falling back to LINEAR profile.", e)
            return self._build_linear()
        if jnt_traj is None:
            logger.warning("TOPP-RA found no feasible parameterization, using LINEAR profile")
            return self._build_linear()

        duration = float(jnt_traj.duration)
        ticks = int(np.floor(duration / self.dt))
        times = np.append(np.arange(max(1, ticks)) * self.dt, duration)
        positions = np.asarray(jnt_traj(times), dtype=np.float64)
        logger.debug(
            "TrajectoryBuilder: TOPP-RA duration=%.3f, path_len=%d, samples=%d",
            duration,
            len(self.joint_path),
            len(positions),
        )
        return Trajectory(positions, duration, self.dt)

    # -----------------------------
    # Linear
    # -----------------------------

    def _linear_duration(self) -> float:
        """Slowest joint's time for the net displacement, velocity- or acceleration-bound."""
        delta = np.abs(self.joint_path.positions[-1] - self.joint_path.positions[0])
        by_velocity = delta / self.v_max
        # Triangular velocity profile: accelerate for half, decelerate for half
        by_acceleration = 2.0 * np.sqrt(2.0 * delta / self.a_max)
        return max(float(np.max(np.maximum(by_velocity, by_acceleration))), 2.0 * self.dt)

    def _build_linear(self) -> Trajectory:
        duration = self.duration or self._linear_duration()
        n = max(2, int(np.ceil(duration / self.dt)))
        positions = self.joint_path.sample_many(np.linspace(0.0, 1.0, n))
        positions, duration = self._stretch_to_limits(positions, duration)
        return Trajectory(positions, duration, self.dt)

    def _stretch_to_limits(
        self, positions: NDArray[np.float64], duration: float
    ) -> tuple[NDArray[np.float64], float]:
        """
        Slow down the segments that break the velocity or acceleration limits.

        Segments are given at least the time their largest joint step needs
        at ``v_max``; around points whose finite-difference acceleration is
        above ``a_max`` that time grows by sqrt of the excess. Everything else
        keeps its original spacing, so slowdowns stay local.

        Returns:
            (positions, duration), resampled at ``dt`` if anything changed
        """
        n = len(positions)
        if n < 2:
            return positions, duration

        seg_dt = duration / (n - 1)
        steps = np.diff(positions, axis=0)
        needed = np.max(np.abs(steps) / self.v_max, axis=1)

        if n > 2:
            accel = np.diff(steps, axis=0) / seg_dt**2
            excess = np.max(np.abs(accel) / self.a_max, axis=1)
            stretch = np.where(excess > 1.0, np.sqrt(excess), 0.0)
            by_accel = np.zeros(n - 1)
            by_accel[:-1] = needed[:-1] * stretch
            by_accel[1:] = np.maximum(by_accel[1:], needed[1:] * stretch)
            needed = np.maximum(needed, by_accel)

        seg_times = np.maximum(np.maximum(needed, self.dt), seg_dt)
        new_duration = float(seg_times.sum())
        if new_duration <= duration * 1.001:
            return positions, duration

        logger.warning(
            "Extending duration from %.3fs to %.3fs (%.1f%% increase) to respect velocity/acceleration limits",
            duration,
            new_duration,
            (new_duration / duration - 1.0) * 100.0,
        )
        knots = np.concatenate([[0.0], np.cumsum(seg_times)])
        t = np.linspace(0.0, new_duration, max(2, int(np.ceil(new_duration / self.dt))))
        resampled = np.column_stack(
            [np.interp(t, knots, positions[:, j]) for j in range(positions.shape[1])]
        )
        return resampled, new_duration

    # -----------------------------
    # Trapezoid
    # -----------------------------

    def _build_trapezoid(self) -> Trajectory:
        from interpolatepy.trapezoidal import (
            TrajectoryParams as TrapParams,
            TrapezoidalTrajectory,
        )

        start = self.joint_path.positions[0]
        end = self.joint_path.positions[-1]

        # (profile function, profile duration) per moving joint
        profiles: dict[int, tuple] = {}
        for j in range(self.n_joints):
            if abs(end[j] - start[j]) < _STILL_RAD:
                continue
            params = TrapParams(
                q0=start[j], q1=end[j], v0=0.0, v1=0.0, vmax=self.v_max[j], amax=self.a_max[j]
            )
            profiles[j] = TrapezoidalTrajectory.generate_trajectory(params)

        fastest = max((d for _, d in profiles.values()), default=0.0)
        duration = self.duration or max(fastest, 2.0 * self.dt)

        times = np.linspace(0.0, duration, max(2, int(np.ceil(duration / self.dt))))
        positions = np.tile(start, (len(times), 1))
        for j, (fn, profile_duration) in profiles.items():
            # Every joint is time-scaled to finish together
            scale = profile_duration / duration
            positions[:, j] = [fn(t * scale)[0] for t in times]

        positions, duration = self._stretch_to_limits(positions, duration)
        return Trajectory(positions, duration, self.dt)

    # -----------------------------
    # Ruckig
    # -----------------------------

    def _build_ruckig(self) -> Trajectory:
        """Jerk-limited move from the first to the last path point; intermediate points are ignored."""
        n = self.n_joints
        start = self.joint_path.positions[0]
        zeros = [0.0] * n

        otg = Ruckig(n, self.dt)
        inp = InputParameter(n)
        out = OutputParameter(n)
        inp.current_position = start.tolist()
        inp.current_velocity = zeros
        inp.current_acceleration = zeros
        inp.target_position = self.joint_path.positions[-1].tolist()
        inp.target_velocity = zeros
        inp.target_acceleration = zeros
        inp.max_velocity = self.v_max.tolist()
        inp.max_acceleration = self.a_max.tolist()
        inp.max_jerk = self.j_max.tolist()

        samples = [start.copy()]
        result = Result.Working
        while result == Result.Working:
            result = otg.update(inp, out)
            samples.append(np.array(out.new_position, dtype=np.float64))
            out.pass_to_input(inp)
        if result != Result.Finished:
            logger.warning("Ruckig failed (%s), falling back to simple trajectory", result)
            return self._build_linear()

        duration = float(out.trajectory.duration)
        logger.debug("TrajectoryBuilder: Ruckig duration=%.3f", duration)
        return Trajectory(np.array(samples), duration, self.dt)


def build_joint_trajectory(
    start_rad: NDArray[np.float64],
    end_rad: NDArray[np.float64],
    profile: ProfileType | str = ProfileType.RUCKIG,
    n_samples: int = 50,
    velocity_scaling: float | None = None,
    acceleration_scaling: float | None = None,
    duration: float | None = None,
    dt: float = INTERVAL_S,
) -> Trajectory:
    """Time-parameterized straight joint-space move from ``start_rad`` to ``end_rad``."""
    return TrajectoryBuilder(
        JointPath.interpolate(start_rad, end_rad, n_samples),
        profile=profile,
        velocity_scaling=velocity_scaling,
        acceleration_scaling=acceleration_scaling,
        duration=duration,
        dt=dt,
    ).build()
