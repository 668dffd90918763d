"""Error codes and exceptions shared by planning, execution and the scene."""

from enum import IntEnum


class MoveItErrorCode(IntEnum):
    """Result codes returned by planning and execution calls."""

    SUCCESS = 1
    FAILURE = 99999
    PLANNING_FAILED = -1
    INVALID_MOTION_PLAN = -2
    CONTROL_FAILED = -4
    TIMED_OUT = -6
    PREEMPTED = -7
    INVALID_GROUP_NAME = -15
    NO_IK_SOLUTION = -31
    INVALID_OBJECT_NAME = -32

    def __bool__(self) -> bool:
        return self is MoveItErrorCode.SUCCESS


class WeldingDemoError(Exception):
    """Base class for all welding demo errors."""

    code: MoveItErrorCode = MoveItErrorCode.FAILURE

    def __init__(self, message: str, code: MoveItErrorCode | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class IKError(WeldingDemoError):
    """A pose could not be reached by inverse kinematics."""

    code = MoveItErrorCode.NO_IK_SOLUTION


class PlanningError(WeldingDemoError):
    code = MoveItErrorCode.PLANNING_FAILED


class ExecutionError(WeldingDemoError):
    code = MoveItErrorCode.CONTROL_FAILED


class SceneError(WeldingDemoError):
    code = MoveItErrorCode.INVALID_OBJECT_NAME
