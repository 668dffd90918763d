"""
UDP transport for marker frames.

Frames go to a multicast group so any number of viewers can watch. Whether
multicast actually loops back on this host is checked once at startup with a
probe datagram; when it does not, or when sends keep failing, the publisher
switches to unicast toward ``unicast_host`` for good.
"""

from __future__ import annotations

import logging
import socket
import sys
import time

from welding_demo import config as cfg
from welding_demo.runtime.loop_timer import LoopMetrics, format_hz_summary
from welding_demo.visualization.markers import MarkerFrame, encode_frame
from welding_demo.visualization.udp import (
    create_sender,
    detect_primary_ip,
    join_group,
    set_reuse,
)

logger = logging.getLogger(__name__)

_PROBE_TOKEN = b"WELDING_DEMO_MCAST_PROBE"
_MAX_SEND_FAILURES = 3
_FAIL_LOG_INTERVAL_S = 5.0


class MarkerPublisher:
    """
    Sends encoded marker frames over UDP.

    Args:
        group, port, ttl, iface_ip: multicast destination and outgoing interface
        transport: "MULTICAST" or "UNICAST" (case-insensitive)
        unicast_host: destination for unicast, also used after a fallback
    """

    def __init__(
        self,
        group: str = cfg.MCAST_GROUP,
        port: int = cfg.MCAST_PORT,
        ttl: int = cfg.MCAST_TTL,
        iface_ip: str = cfg.MCAST_IF,
        transport: str = cfg.MARKER_TRANSPORT,
        unicast_host: str = cfg.MARKER_UNICAST_HOST,
    ) -> None:
        self.group = group
        self.port = port
        self.ttl = ttl
        self.iface_ip = iface_ip
        self.unicast_host = unicast_host

        self._use_unicast = transport.strip().upper() == "UNICAST"
        self._sock: socket.socket | None = None
        self._send_failures = 0
        self._last_fail_log = 0.0
        self._last_send = 0.0
        self._metrics = LoopMetrics()
        self.frames_sent = 0

        if self._use_unicast:
            self._open_unicast("UNICAST")
        else:
            self._open_multicast()

    @property
    def transport(self) -> str:
        return "UNICAST" if self._use_unicast else "MULTICAST"

    @property
    def destination(self) -> tuple[str, int]:
        host = self.unicast_host if self._use_unicast else self.group
        return host, self.port

    # -----------------------------
    # Socket setup
    # -----------------------------

    def _open_unicast(self, label: str) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug("Closing previous marker socket failed: %s", e)
        self._sock = create_sender()
        self._use_unicast = True
        self._send_failures = 0
        logger.info("MarkerPublisher (%s) -> dest=%s:%d", label, self.unicast_host, self.port)

    def _open_multicast(self) -> None:
        sock = create_sender()
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.ttl)
        if sys.platform == "darwin":
            # Loopback delivery is off by default on macOS
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)

        for iface in (self.iface_ip, detect_primary_ip()):
            try:
                sock.setsockopt(
                    socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(iface)
                )
            except OSError as e:
                logger.warning("MarkerPublisher: cannot send multicast on %s: %s", iface, e)
                continue
            self.iface_ip = iface
            if self._verify_multicast_reachable(sock):
                self._sock = sock
                logger.info(
                    "MarkerPublisher (MULTICAST) -> group=%s port=%d iface=%s ttl=%d",
                    self.group,
                    self.port,
                    iface,
                    self.ttl,
                )
                return
            logger.warning("MarkerPublisher: multicast probe on %s was not received", iface)

        sock.close()
        self._open_unicast("UNICAST-FALLBACK")

    def _verify_multicast_reachable(self, sock: socket.socket, timeout: float = 0.1) -> bool:
        """Send a probe to the group and check that a local member receives it."""
        receiver = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            set_reuse(receiver)
            receiver.bind(("", self.port))
            join_group(receiver, self.group, self.iface_ip)
            receiver.settimeout(timeout)
            sock.sendto(_PROBE_TOKEN, (self.group, self.port))

            # A running viewer shares the port; skip its traffic
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline:
                data, _ = receiver.recvfrom(65535)
                if data == _PROBE_TOKEN:
                    return True
            return False
        except OSError as e:
            logger.debug("Multicast probe failed: %s", e)
            return False
        finally:
            receiver.close()

    # -----------------------------
    # Sending
    # -----------------------------

    def publish(self, frame: MarkerFrame) -> bool:
        """Send one marker frame. Returns False if the send failed."""
        if self._sock is None:
            self._open_unicast("UNICAST")
        assert self._sock is not None

        payload = encode_frame(frame)
        try:
            self._sock.sendto(payload, self.destination)
        except OSError as e:
            self._on_send_failure(e)
            return False

        self._send_failures = 0
        self.frames_sent += 1
        self._record_send(len(frame.markers), len(payload))
        return True

    def _record_send(self, n_markers: int, n_bytes: int) -> None:
        now = time.monotonic()
        if self._last_send > 0:
            self._metrics.record_period(now - self._last_send)
        self._last_send = now
        if self._metrics.should_log(now, 3.0):
            self._metrics.compute_stats()
            logger.debug(
                "tx: %s frames=%d last=%d markers, %d bytes",
                format_hz_summary(self._metrics),
                self.frames_sent,
                n_markers,
                n_bytes,
            )

    def _on_send_failure(self, e: OSError) -> None:
        self._send_failures += 1
        now = time.monotonic()
        if now - self._last_fail_log >= _FAIL_LOG_INTERVAL_S:
            logger.warning("MarkerPublisher send failed: %s", e)
            self._last_fail_log = now
        if not self._use_unicast and self._send_failures >= _MAX_SEND_FAILURES:
            logger.info(
                "MarkerPublisher: %d consecutive send errors; switching to UNICAST",
                self._send_failures,
            )
            self._open_unicast("UNICAST-FALLBACK")

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
