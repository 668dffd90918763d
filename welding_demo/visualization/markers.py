"""
Wire types for visualization markers.

Marker frames travel as msgpack over UDP from the demo to the viewer. A frame
is a batch of markers published together (one ``trigger``), optionally
preceded by a delete-all.

Positions are meters in the planning frame, orientations (x, y, z, w)
quaternions, colors RGBA in [0, 1].
"""

import logging
from enum import IntEnum
from typing import Annotated

import msgspec
import numpy as np

logger = logging.getLogger(__name__)


def _enc_hook(obj: object) -> object:
    """Custom encoder hook for numpy types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    raise NotImplementedError(f"Cannot encode {type(obj)}")


class MarkerType(IntEnum):
    ARROW = 0
    CUBE = 1
    SPHERE = 2
    CYLINDER = 3
    LINE_STRIP = 4
    SPHERE_LIST = 7
    TEXT = 9


class Action(IntEnum):
    ADD = 0
    DELETE = 2
    DELETEALL = 3


Vec3 = Annotated[list[float], msgspec.Meta(min_length=3, max_length=3)]
Quat = Annotated[list[float], msgspec.Meta(min_length=4, max_length=4)]
RGBA = Annotated[list[float], msgspec.Meta(min_length=4, max_length=4)]


class Colors:
    """Named RGBA colors."""

    BLACK: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)
    WHITE: tuple[float, float, float, float] = (1.0, 1.0, 1.0, 1.0)
    RED: tuple[float, float, float, float] = (0.8, 0.1, 0.1, 1.0)
    GREEN: tuple[float, float, float, float] = (0.1, 0.8, 0.1, 1.0)
    BLUE: tuple[float, float, float, float] = (0.1, 0.1, 0.8, 1.0)
    YELLOW: tuple[float, float, float, float] = (1.0, 1.0, 0.0, 1.0)
    ORANGE: tuple[float, float, float, float] = (1.0, 0.5, 0.0, 1.0)
    CYAN: tuple[float, float, float, float] = (0.0, 1.0, 1.0, 1.0)
    MAGENTA: tuple[float, float, float, float] = (1.0, 0.0, 1.0, 1.0)
    GREY: tuple[float, float, float, float] = (0.9, 0.9, 0.9, 1.0)
    DARK_GREY: tuple[float, float, float, float] = (0.6, 0.6, 0.6, 1.0)
    LIME_GREEN: tuple[float, float, float, float] = (0.6, 1.0, 0.2, 1.0)
    TRANSLUCENT: tuple[float, float, float, float] = (0.1, 0.1, 0.1, 0.25)

    @classmethod
    def get(cls, name: str) -> tuple[float, float, float, float]:
        """Look up a color by case-insensitive name."""
        try:
            return getattr(cls, name.upper())
        except AttributeError:
            raise ValueError(f"Unknown color '{name}'") from None


class Scales(IntEnum):
    """Named marker sizes, mapped to meters by ``scale_value``."""

    XXXXSMALL = 1
    XXXSMALL = 2
    XXSMALL = 3
    XSMALL = 4
    SMALL = 5
    MEDIUM = 6
    LARGE = 7
    XLARGE = 8
    XXLARGE = 9
    XXXLARGE = 10
    XXXXLARGE = 11


_SCALE_METERS: dict[Scales, float] = {
    Scales.XXXXSMALL: 0.001,
    Scales.XXXSMALL: 0.0025,
    Scales.XXSMALL: 0.005,
    Scales.XSMALL: 0.0065,
    Scales.SMALL: 0.0075,
    Scales.MEDIUM: 0.01,
    Scales.LARGE: 0.025,
    Scales.XLARGE: 0.05,
    Scales.XXLARGE: 0.075,
    Scales.XXXLARGE: 0.1,
    Scales.XXXXLARGE: 0.125,
}

# Text and path widths are drawn larger than the base magnitude
TEXT_SCALE_FACTOR = 4.0
LINE_SCALE_FACTOR = 1.0
AXIS_LENGTH_FACTOR = 10.0


def scale_value(scale: Scales, factor: float = 1.0) -> float:
    """Marker size in meters for a named scale."""
    return _SCALE_METERS[scale] * factor


class Marker(msgspec.Struct, array_like=True, frozen=True):
    """One visualization primitive.

    ``scale`` holds the x/y/z extent (meters); text uses ``scale[2]`` as
    its height. ``points`` is used by LINE_STRIP and SPHERE_LIST.
    """

    ns: str
    id: Annotated[int, msgspec.Meta(ge=0)]
    type: MarkerType
    action: Action = Action.ADD
    position: Vec3 = msgspec.field(default_factory=lambda: [0.0, 0.0, 0.0])
    orientation: Quat = msgspec.field(default_factory=lambda: [0.0, 0.0, 0.0, 1.0])
    scale: Vec3 = msgspec.field(default_factory=lambda: [1.0, 1.0, 1.0])
    color: RGBA = msgspec.field(default_factory=lambda: list(Colors.WHITE))
    points: list[Vec3] = msgspec.field(default_factory=list)
    text: str = ""
    frame_id: str = "base_link"

    @property
    def key(self) -> tuple[str, int]:
        return (self.ns, self.id)


class MarkerFrame(msgspec.Struct, array_like=True, frozen=True):
    """A batch of markers published at once."""

    seq: Annotated[int, msgspec.Meta(ge=0)]
    stamp: float
    markers: list[Marker] = msgspec.field(default_factory=list)
    delete_all: bool = False


# Module-level codecs (thread-safe, reusable)
_encoder = msgspec.msgpack.Encoder(enc_hook=_enc_hook)
_frame_decoder = msgspec.msgpack.Decoder(MarkerFrame)


def encode_frame(frame: MarkerFrame) -> bytes:
    """Encode a marker frame to msgpack bytes."""
    return _encoder.encode(frame)


def decode_frame(data: bytes) -> MarkerFrame:
    """Decode msgpack bytes to a MarkerFrame.

    Raises:
        msgspec.ValidationError: If data is not a valid marker frame
        msgspec.DecodeError: If data is not valid msgpack
    """
    return _frame_decoder.decode(data)
