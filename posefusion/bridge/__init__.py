"""Sensor bridge: packet schema, live UDP ingest, session replay."""

from .packets import CameraPacket, ImuClock, ImuPacket, parse_packet, parse_payload
from .replay import iter_replay
from .udp import UdpSensorReceiver

__all__ = [
    "CameraPacket",
    "ImuClock",
    "ImuPacket",
    "UdpSensorReceiver",
    "iter_replay",
    "parse_packet",
    "parse_payload",
]
