"""Live sensor ingest from an external bridge process over localhost UDP.

A device-side process (IMU reader, camera solvePnP) owns hardware access and
sends one JSON packet per datagram; see ``packets`` for the schema.
"""

from __future__ import annotations

import logging
import socket

from .packets import Packet, parse_packet

logger = logging.getLogger(__name__)


class UdpSensorReceiver:
    def __init__(self, host: str, port: int):
        self.host = str(host)
        self.port = int(port)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((self.host, self.port))
        self.sock.setblocking(False)
        self.malformed = 0
        logger.info("[BRIDGE] listening on %s:%s", self.host, self.port)

    def recv_all(self) -> list[Packet]:
        """Drain every pending datagram, in arrival order."""
        packets: list[Packet] = []
        while True:
            try:
                data, _ = self.sock.recvfrom(65535)
            except BlockingIOError:
                break
            except OSError:
                logger.exception("[BRIDGE] receive failed")
                break
            parsed = parse_packet(data)
            if parsed is None:
                self.malformed += 1
                logger.debug("[BRIDGE] dropped malformed packet (%d bytes)", len(data))
                continue
            packets.append(parsed)
        return packets

    def close(self) -> None:
        self.sock.close()
