"""
Operator gating for step-by-step demos.

The demo loop calls ``wait_for_next_step`` at each checkpoint. It is released
by a *next* request, from code, from the console, or from a UDP datagram
sent by the viewer's buttons. *continue* switches to autonomous mode (all
later checkpoints pass immediately); *stop* ends the demo.
"""

import logging
import socket
import sys
import threading
from typing import TextIO

from welding_demo import config as cfg

logger = logging.getLogger(__name__)

# Datagram payloads accepted on the remote control port
CMD_NEXT = b"next"
CMD_CONTINUE = b"continue"
CMD_STOP = b"stop"

_CONSOLE_NEXT = ("", "n", "next")
_CONSOLE_CONTINUE = ("c", "continue")
_CONSOLE_STOP = ("q", "quit", "stop")


class RemoteControl:
    """Blocks the demo at checkpoints until the operator says *next*."""

    def __init__(
        self,
        host: str = cfg.REMOTE_CONTROL_HOST,
        port: int = cfg.REMOTE_CONTROL_PORT,
        console: bool = True,
        listen: bool = True,
        autonomous: bool = False,
        stdin: TextIO | None = None,
    ):
        self.host = host
        self.port = port
        self._console = console
        self._listen = listen
        self._stdin = stdin

        self._cond = threading.Condition()
        self._next_requested = False
        self._autonomous = autonomous
        self._stopped = False
        self._waiting = False

        self._closed = threading.Event()
        self._sock: socket.socket | None = None
        self._threads: list[threading.Thread] = []

    @property
    def is_autonomous(self) -> bool:
        with self._cond:
            return self._autonomous

    @property
    def is_stopped(self) -> bool:
        with self._cond:
            return self._stopped

    @property
    def is_waiting(self) -> bool:
        with self._cond:
            return self._waiting

    def start(self) -> None:
        """Start the UDP listener and the console reader (as configured)."""
        if self._listen and self._sock is None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.settimeout(0.2)
            self._sock = sock
            self.port = sock.getsockname()[1]
            self._spawn(self._udp_loop, "remote-control-udp")
            logger.info("Remote control listening on %s:%d", self.host, self.port)

        if self._console:
            self._spawn(self._console_loop, "remote-control-console")
            logger.info(
                "Console control: Enter/n = next, c = continue, q = stop"
            )

    def _spawn(self, target, name: str) -> None:
        t = threading.Thread(target=target, name=name, daemon=True)
        t.start()
        self._threads.append(t)

    # -----------------------------
    # Inputs
    # -----------------------------

    def next(self) -> None:
        """Release the current (or the next) checkpoint."""
        with self._cond:
            self._next_requested = True
            self._cond.notify_all()

    def set_autonomous(self, autonomous: bool = True) -> None:
        """Let every checkpoint pass without waiting."""
        with self._cond:
            self._autonomous = autonomous
            self._cond.notify_all()
        logger.info("Remote control: autonomous mode %s", "on" if autonomous else "off")

    def stop(self) -> None:
        """Request the demo to end; pending and future waits return False."""
        with self._cond:
            self._stopped = True
            self._cond.notify_all()
        logger.info("Remote control: stop requested")

    def handle_command(self, data: bytes) -> bool:
        """Apply one remote control datagram. Returns False if unrecognized."""
        cmd = data.strip().lower()
        if cmd == CMD_NEXT:
            self.next()
        elif cmd == CMD_CONTINUE:
            self.set_autonomous(True)
        elif cmd == CMD_STOP:
            self.stop()
        else:
            logger.warning("Ignoring unknown remote control command %r", data[:32])
            return False
        return True

    # -----------------------------
    # Gating
    # -----------------------------

    def wait_for_next_step(self, prompt: str = "", timeout: float | None = None) -> bool:
        """
        Log ``prompt`` and block until *next*, autonomous mode, or *stop*.

        Returns:
            True to proceed, False when the wait ended without a go-ahead
            (stop requested, control closed, timeout).
        """
        with self._cond:
            if self._stopped or self._closed.is_set():
                return False
            if self._autonomous:
                if prompt:
                    logger.debug("%s (autonomous)", prompt)
                return True

            if prompt:
                logger.info("%s", prompt)
            self._waiting = True
            try:
                released = self._cond.wait_for(
                    lambda: (
                        self._next_requested
                        or self._autonomous
                        or self._stopped
                        or self._closed.is_set()
                    ),
                    timeout=timeout,
                )
                self._next_requested = False
            finally:
                self._waiting = False

            if not released:
                logger.warning("Timed out waiting for the next step")
                return False
            if self._closed.is_set():
                logger.debug("Remote control closed while waiting")
                return False
            return not self._stopped

    # -----------------------------
    # Listener threads
    # -----------------------------

    def _udp_loop(self) -> None:
        sock = self._sock
        assert sock is not None
        while not self._closed.is_set():
            try:
                data, addr = sock.recvfrom(256)
            except socket.timeout:
                continue
            except OSError as e:
                if not self._closed.is_set():
                    logger.warning("Remote control socket error: %s", e)
                break
            logger.debug("Remote control %r from %s", data, addr)
            self.handle_command(data)

    def _console_loop(self) -> None:
        stream = self._stdin if self._stdin is not None else sys.stdin
        while not self._closed.is_set():
            line = stream.readline()
            if line == "":
                logger.debug("Console input closed")
                return
            cmd = line.strip().lower()
            if cmd in _CONSOLE_NEXT:
                self.next()
            elif cmd in _CONSOLE_CONTINUE:
                self.set_autonomous(True)
            elif cmd in _CONSOLE_STOP:
                self.stop()
            else:
                logger.info("Unknown input %r (Enter/n = next, c = continue, q = stop)", cmd)

    def close(self) -> None:
        """Stop listeners and release any waiter."""
        self._closed.set()
        with self._cond:
            self._cond.notify_all()
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        for t in self._threads:
            # The console reader blocks in readline; it is a daemon and is left behind
            if t.name != "remote-control-console":
                t.join(timeout=1.0)
        self._threads.clear()


def send_command(
    command: bytes,
    host: str = cfg.REMOTE_CONTROL_HOST,
    port: int = cfg.REMOTE_CONTROL_PORT,
) -> None:
    """Send one remote control datagram (used by the viewer buttons)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.sendto(command, (host, port))
    finally:
        sock.close()
