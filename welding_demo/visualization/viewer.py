"""
Marker viewer for the welding demo.

Receives marker frames over UDP, keeps the current marker set in a
``MarkerScene`` and draws it in a matplotlib 3D window. The *Next*,
*Continue* and *Stop* buttons send remote control datagrams to the demo.

Usage:
    welding-demo-viewer [--transport UNICAST] [--port 50520] [-v]
"""

from __future__ import annotations

import argparse
import logging
import socket
import threading
import time

import matplotlib.pyplot as plt
import msgspec
import numpy as np
from matplotlib.animation import FuncAnimation
from matplotlib.widgets import Button
from mpl_toolkits.mplot3d.art3d import Poly3DCollection
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation

from welding_demo import config as cfg
from welding_demo.runtime.loop_timer import LoopMetrics, format_hz_summary
from welding_demo.visualization.markers import (
    Action,
    Marker,
    MarkerFrame,
    MarkerType,
    decode_frame,
)
from welding_demo.visualization.remote_control import (
    CMD_CONTINUE,
    CMD_NEXT,
    CMD_STOP,
    send_command,
)
from welding_demo.visualization.udp import create_multicast_receiver, create_unicast_receiver

logger = logging.getLogger(__name__)

MarkerKey = tuple[str, int]


class MarkerScene:
    """Current set of markers, keyed by (namespace, id)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._markers: dict[MarkerKey, Marker] = {}
        self.version = 0
        self.last_seq = -1

    def apply(self, frame: MarkerFrame) -> None:
        with self._lock:
            if frame.delete_all:
                self._markers.clear()
            for marker in frame.markers:
                if marker.action == Action.ADD:
                    self._markers[marker.key] = marker
                elif marker.action == Action.DELETE:
                    self._markers.pop(marker.key, None)
                elif marker.action == Action.DELETEALL:
                    self._markers.clear()
            if frame.seq <= self.last_seq:
                logger.debug("Frame seq %d after %d (publisher restarted?)", frame.seq, self.last_seq)
            self.last_seq = frame.seq
            self.version += 1

    def markers(self) -> list[Marker]:
        with self._lock:
            return list(self._markers.values())

    def get(self, ns: str, marker_id: int) -> Marker | None:
        with self._lock:
            return self._markers.get((ns, marker_id))

    def clear(self) -> None:
        with self._lock:
            self._markers.clear()
            self.version += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._markers)


class MarkerSubscriber:
    """Background thread that decodes marker frames into a MarkerScene."""

    def __init__(
        self,
        scene: MarkerScene,
        group: str = cfg.MCAST_GROUP,
        port: int = cfg.MCAST_PORT,
        iface_ip: str = cfg.MCAST_IF,
        transport: str = cfg.MARKER_TRANSPORT,
        unicast_host: str = cfg.MARKER_UNICAST_HOST,
    ):
        self.scene = scene
        self.group = group
        self.port = port
        self.iface_ip = iface_ip
        self.transport = transport.strip().upper()
        self.unicast_host = unicast_host

        self.frames_received = 0
        self.decode_errors = 0
        self._metrics = LoopMetrics()
        self._last_rx = 0.0
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._closed = threading.Event()

    def start(self) -> None:
        if self.transport == "UNICAST":
            sock = create_unicast_receiver(self.port, self.unicast_host)
        else:
            # Also receives unicast datagrams sent to the port
            sock = create_multicast_receiver(self.group, self.port, self.iface_ip)
        sock.settimeout(0.2)
        self._sock = sock
        self.port = sock.getsockname()[1]
        self._thread = threading.Thread(target=self._rx_loop, name="marker-rx", daemon=True)
        self._thread.start()
        logger.info(
            "MarkerSubscriber (%s) listening: group=%s port=%d iface=%s",
            self.transport,
            self.group,
            self.port,
            self.iface_ip,
        )

    def handle_datagram(self, data: bytes) -> bool:
        """Decode one datagram and apply it. Returns False if it was not a frame."""
        try:
            frame = decode_frame(data)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            self.decode_errors += 1
            logger.debug("Dropping undecodable datagram (%d bytes): %s", len(data), e)
            return False
        self.scene.apply(frame)
        self.frames_received += 1

        now = time.monotonic()
        if self._last_rx > 0:
            self._metrics.record_period(now - self._last_rx)
        self._last_rx = now
        if self._metrics.should_log(now, 3.0):
            self._metrics.compute_stats()
            logger.debug("rx: %s frames=%d", format_hz_summary(self._metrics), self.frames_received)
        return True

    def _rx_loop(self) -> None:
        sock = self._sock
        assert sock is not None
        while not self._closed.is_set():
            try:
                data, _ = sock.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError as e:
                if not self._closed.is_set():
                    logger.error("Marker socket error: %s", e)
                break
            self.handle_datagram(data)

    def close(self) -> None:
        self._closed.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None


# -----------------------------
# Drawing
# -----------------------------


def _rotation(marker: Marker) -> NDArray[np.float64]:
    return Rotation.from_quat(marker.orientation).as_matrix()


def _cube_faces(marker: Marker) -> list[NDArray[np.float64]]:
    half = np.asarray(marker.scale) / 2.0
    corners = np.array(
        [[sx, sy, sz] for sx in (-1, 1) for sy in (-1, 1) for sz in (-1, 1)],
        dtype=np.float64,
    ) * half
    world = corners @ _rotation(marker).T + np.asarray(marker.position)
    face_idx = (
        (0, 1, 3, 2),
        (4, 5, 7, 6),
        (0, 1, 5, 4),
        (2, 3, 7, 6),
        (0, 2, 6, 4),
        (1, 3, 7, 5),
    )
    return [world[list(f)] for f in face_idx]


def _surface(marker: Marker, n: int = 16) -> tuple[NDArray, NDArray, NDArray]:
    """Parametric surface of a sphere/ellipsoid or a cylinder marker."""
    u = np.linspace(0.0, 2.0 * np.pi, n)
    rx, ry, rz = np.asarray(marker.scale) / 2.0
    if marker.type == MarkerType.SPHERE:
        v = np.linspace(0.0, np.pi, n // 2)
        pts = np.stack(
            [
                rx * np.outer(np.cos(u), np.sin(v)),
                ry * np.outer(np.sin(u), np.sin(v)),
                rz * np.outer(np.ones_like(u), np.cos(v)),
            ],
            axis=-1,
        )
    else:
        h = np.array([-rz, rz])
        pts = np.stack(
            [
                rx * np.outer(np.cos(u), np.ones_like(h)),
                ry * np.outer(np.sin(u), np.ones_like(h)),
                np.outer(np.ones_like(u), h),
            ],
            axis=-1,
        )
    world = pts @ _rotation(marker).T + np.asarray(marker.position)
    return world[..., 0], world[..., 1], world[..., 2]


def draw_marker(ax, marker: Marker) -> None:
    """Draw one marker on a 3D axes."""
    rgb = marker.color[:3]
    alpha = marker.color[3]
    pos = marker.position

    if marker.type == MarkerType.LINE_STRIP:
        pts = np.asarray(marker.points, dtype=np.float64).reshape(-1, 3)
        ax.plot(pts[:, 0], pts[:, 1], pts[:, 2], color=rgb, alpha=alpha,
                linewidth=max(1.0, marker.scale[0] * 200.0))
    elif marker.type == MarkerType.SPHERE_LIST:
        pts = np.asarray(marker.points, dtype=np.float64).reshape(-1, 3)
        ax.scatter(pts[:, 0], pts[:, 1], pts[:, 2], color=rgb, alpha=alpha,
                   s=max(4.0, marker.scale[0] * 1000.0))
    elif marker.type == MarkerType.ARROW:
        if len(marker.points) >= 2:
            start = np.asarray(marker.points[0])
            end = np.asarray(marker.points[1])
        else:
            start = np.asarray(pos)
            end = start + _rotation(marker)[:, 0] * marker.scale[0]
        d = end - start
        ax.quiver(start[0], start[1], start[2], d[0], d[1], d[2], color=rgb, alpha=alpha,
                  arrow_length_ratio=0.2)
    elif marker.type == MarkerType.TEXT:
        ax.text(pos[0], pos[1], pos[2], marker.text, color=rgb, alpha=alpha,
                fontsize=max(6.0, marker.scale[2] * 200.0))
    elif marker.type == MarkerType.CUBE:
        ax.add_collection3d(
            Poly3DCollection(_cube_faces(marker), facecolors=[(*rgb, alpha)],
                             edgecolors=[(*rgb, min(1.0, alpha + 0.3))])
        )
    elif marker.type in (MarkerType.SPHERE, MarkerType.CYLINDER):
        X, Y, Z = _surface(marker)
        ax.plot_wireframe(X, Y, Z, color=rgb, alpha=alpha, linewidth=0.5)
    else:
        logger.debug("Unsupported marker type %s", marker.type)


class MarkerViewer:
    """matplotlib window showing a MarkerScene with remote control buttons."""

    def __init__(
        self,
        scene: MarkerScene,
        remote_host: str = cfg.REMOTE_CONTROL_HOST,
        remote_port: int = cfg.REMOTE_CONTROL_PORT,
        refresh_hz: float = 10.0,
        bounds: float = 1.0,
    ):
        self.scene = scene
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.refresh_hz = refresh_hz
        self.bounds = bounds
        self._drawn_version = -1
        self._anim: FuncAnimation | None = None

        self.fig = plt.figure(figsize=(9, 8))
        if self.fig.canvas.manager is not None:
            self.fig.canvas.manager.set_window_title("Welding Demo Markers")
        self.ax = self.fig.add_axes((0.0, 0.1, 1.0, 0.9), projection="3d")

        self._buttons: list[Button] = []
        for i, (label, command) in enumerate(
            (("Next", CMD_NEXT), ("Continue", CMD_CONTINUE), ("Stop", CMD_STOP))
        ):
            button_ax = self.fig.add_axes((0.2 + i * 0.22, 0.02, 0.18, 0.06))
            button = Button(button_ax, label)
            button.on_clicked(lambda _event, cmd=command: self.send(cmd))
            self._buttons.append(button)

    def send(self, command: bytes) -> None:
        try:
            send_command(command, self.remote_host, self.remote_port)
        except OSError as e:
            logger.warning("Could not send %r to %s:%d: %s", command, self.remote_host, self.remote_port, e)
            return
        logger.info("Sent %s", command.decode())

    def redraw(self, force: bool = False) -> bool:
        """Redraw when the scene changed. Returns True if it redrew."""
        version = self.scene.version
        if not force and version == self._drawn_version:
            return False
        self._drawn_version = version

        ax = self.ax
        ax.cla()
        b = self.bounds
        ax.set_xlim(-b, b)
        ax.set_ylim(-b, b)
        ax.set_zlim(0.0, 2.0 * b)
        ax.set_xlabel("x [m]")
        ax.set_ylabel("y [m]")
        ax.set_zlabel("z [m]")
        for marker in self.scene.markers():
            draw_marker(ax, marker)
        self.fig.canvas.draw_idle()
        return True

    def run(self) -> None:
        self.redraw(force=True)
        self._anim = FuncAnimation(
            self.fig,
            lambda _frame: self.redraw(),
            interval=1000.0 / self.refresh_hz,
            cache_frame_data=False,
        )
        plt.show()


def main() -> int:
    parser = argparse.ArgumentParser(description="Welding demo marker viewer")
    parser.add_argument("--transport", choices=["MULTICAST", "UNICAST"], default=cfg.MARKER_TRANSPORT)
    parser.add_argument("--group", default=cfg.MCAST_GROUP, help="Multicast group")
    parser.add_argument("--port", type=int, default=cfg.MCAST_PORT, help="Marker UDP port")
    parser.add_argument("--iface", default=cfg.MCAST_IF, help="Multicast interface IP")
    parser.add_argument("--host", default=cfg.MARKER_UNICAST_HOST, help="Unicast bind host")
    parser.add_argument("--remote-host", default=cfg.REMOTE_CONTROL_HOST)
    parser.add_argument("--remote-port", type=int, default=cfg.REMOTE_CONTROL_PORT)
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="-v=INFO, -vv=DEBUG"
    )
    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose >= 2 else logging.INFO if args.verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("matplotlib").setLevel(max(log_level, logging.INFO))

    scene = MarkerScene()
    subscriber = MarkerSubscriber(
        scene,
        group=args.group,
        port=args.port,
        iface_ip=args.iface,
        transport=args.transport,
        unicast_host=args.host,
    )
    try:
        subscriber.start()
    except OSError as e:
        logger.error("Failed to open marker socket: %s", e)
        return 1

    try:
        MarkerViewer(scene, args.remote_host, args.remote_port).run()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        subscriber.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
