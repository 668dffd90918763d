"""
Visualization: marker wire types, UDP publisher, operator remote control,
visual tools and the matplotlib marker viewer (``welding_demo.visualization.viewer``).
"""

from welding_demo.visualization.markers import (
    Action,
    Colors,
    Marker,
    MarkerFrame,
    MarkerType,
    Scales,
    decode_frame,
    encode_frame,
)
from welding_demo.visualization.publisher import MarkerPublisher
from welding_demo.visualization.remote_control import RemoteControl, send_command
from welding_demo.visualization.visual_tools import VisualTools

__all__ = [
    "Action",
    "Colors",
    "Marker",
    "MarkerFrame",
    "MarkerType",
    "Scales",
    "decode_frame",
    "encode_frame",
    "MarkerPublisher",
    "RemoteControl",
    "send_command",
    "VisualTools",
]
