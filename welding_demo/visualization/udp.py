"""UDP socket helpers shared by the marker publisher and the viewer."""

import logging
import socket
import struct

logger = logging.getLogger(__name__)


def detect_primary_ip() -> str:
    """Address of the interface that routes to the internet, or loopback."""
    tmp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect sends nothing; it only picks a route
        tmp.connect(("1.1.1.1", 80))
        return tmp.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        tmp.close()


def set_reuse(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except OSError:
            logger.debug("SO_REUSEPORT not permitted")


def join_group(sock: socket.socket, group: str, iface_ip: str | None) -> None:
    """Join ``group`` on ``iface_ip``, or on any interface when it is None."""
    if iface_ip is None:
        mreq = struct.pack("=4sl", socket.inet_aton(group), socket.INADDR_ANY)
    else:
        mreq = socket.inet_aton(group) + socket.inet_aton(iface_ip)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)


def create_multicast_receiver(group: str, port: int, iface_ip: str) -> socket.socket:
    """Bind ``port`` and join ``group``, trying iface_ip, the primary NIC, then INADDR_ANY."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    set_reuse(sock)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, 1 << 20)
    try:
        sock.bind(("", port))
    except OSError:
        sock.bind((iface_ip, port))

    for candidate in (iface_ip, detect_primary_ip()):
        try:
            join_group(sock, group, candidate)
            return sock
        except OSError as e:
            logger.debug("Joining %s on %s failed: %s", group, candidate, e)
    try:
        join_group(sock, group, None)
    except OSError:
        sock.close()
        raise
    return sock


def create_unicast_receiver(port: int, host: str) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    set_reuse(sock)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, 1 << 20)
    try:
        sock.bind((host, port))
    except OSError:
        sock.bind(("", port))
    return sock


def create_sender() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, 1 << 20)
    return sock
