"""Guest agent: a line-oriented JSON command server for gesture injection.

Each client gets a welcome line, then one response line per request line.
Bad requests are answered with ``{"type": "error", ...}`` and the connection
stays open; only EOF, a socket error or ``stop()`` end it.
"""

from __future__ import annotations

import logging
import socket
import socketserver
import threading
import time
from typing import Optional, Set, Union

from pydantic import BaseModel

from apk_splicer.agent.injection import Gesture, InjectionBackend, ShellInputBackend
from apk_splicer.agent.messages import (
    DEFAULT_AGENT_PORT,
    ErrorResponse,
    GestureCommand,
    LineReader,
    MultiTouchRequest,
    MultiTouchResponse,
    PingRequest,
    PongResponse,
    StatusRequest,
    StatusResponse,
    SwipeRequest,
    SwipeResponse,
    TapRequest,
    TapResponse,
    WelcomeMessage,
    encode,
    parse_command,
)
from apk_splicer.errors import ProtocolError

logger = logging.getLogger(__name__)

READ_TIMEOUT_S = 5.0


def _utc_ms() -> int:
    return int(time.time() * 1000)


class _AgentTCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], agent: "GuestAgentServer") -> None:
        self.agent = agent
        super().__init__(address, _AgentRequestHandler)


class _AgentRequestHandler(socketserver.BaseRequestHandler):
    server: _AgentTCPServer  # type: ignore[assignment]

    def handle(self) -> None:
        agent = self.server.agent
        sock: socket.socket = self.request
        agent._register(sock)
        logger.info("Client connected: %s:%s", *self.client_address[:2])
        try:
            agent._serve_connection(sock)
        finally:
            agent._deregister(sock)
            logger.info("Client disconnected: %s:%s", *self.client_address[:2])


class GuestAgentServer:
    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_AGENT_PORT,
        *,
        backend: Optional[InjectionBackend] = None,
        read_timeout_s: float = READ_TIMEOUT_S,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.backend: InjectionBackend = (
            backend if backend is not None else ShellInputBackend.local()
        )
        self.read_timeout_s = float(read_timeout_s)

        self._running = threading.Event()
        self._lock = threading.Lock()
        self._connections: Set[socket.socket] = set()
        self._server: Optional[_AgentTCPServer] = None
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "GuestAgentServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def address(self) -> tuple[str, int]:
        server = self._server
        if server is None:
            return (self.host, self.port)
        host, port = server.server_address[:2]
        return (str(host), int(port))

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def start(self) -> None:
        if self._server is not None:
            return
        self._server = _AgentTCPServer((self.host, self.port), self)
        self._running.set()
        self._thread = threading.Thread(
            target=self._serve_forever, name="apksplicer-agent", daemon=True
        )
        self._thread.start()
        logger.info("Guest agent listening on %s:%s", *self.address)

    def _serve_forever(self) -> None:
        server = self._server
        if server is None:
            return
        try:
            server.serve_forever()
        except Exception:
            logger.exception("Guest agent accept loop crashed")
        finally:
            self._running.clear()

    def stop(self) -> None:
        server = self._server
        if server is None:
            return
        self._running.clear()

        with self._lock:
            connections = list(self._connections)
        for sock in connections:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

        try:
            server.shutdown()
            server.server_close()
        finally:
            self._server = None

        thread = self._thread
        if thread is not None:
            thread.join(timeout=2.0)
        self._thread = None
        logger.info("Guest agent stopped")

    # ------------------------------------------------------------ connections

    def _register(self, sock: socket.socket) -> None:
        with self._lock:
            self._connections.add(sock)

    def _deregister(self, sock: socket.socket) -> None:
        with self._lock:
            self._connections.discard(sock)

    def _serve_connection(self, sock: socket.socket) -> None:
        sock.settimeout(self.read_timeout_s)
        try:
            sock.sendall(encode(WelcomeMessage()))
        except OSError as e:
            logger.debug("Welcome not delivered: %s", e)
            return

        reader = LineReader(sock)
        while self._running.is_set():
            try:
                line = reader.readline()
            except socket.timeout:
                continue
            except ProtocolError as e:
                logger.warning("Rejected request: %s", e.describe())
                response: BaseModel = ErrorResponse(message=e.detail)
            except OSError as e:
                logger.debug("Read failed: %s", e)
                return
            else:
                if line is None:
                    return
                if not line.strip():
                    continue
                response = self.handle_line(line)

            try:
                sock.sendall(encode(response))
            except OSError as e:
                logger.debug("Write failed: %s", e)
                return

    # --------------------------------------------------------------- dispatch

    def handle_line(self, line: Union[str, bytes]) -> BaseModel:
        try:
            command = parse_command(line)
        except ProtocolError as e:
            logger.warning("Rejected request: %s", e.describe())
            return ErrorResponse(message=e.detail)
        return self.dispatch(command)

    def dispatch(self, command: GestureCommand) -> BaseModel:
        if isinstance(command, PingRequest):
            return PongResponse(timestamp=_utc_ms())

        if isinstance(command, TapRequest):
            ok = self._inject(Gesture.tap(command.x, command.y, command.duration))
            return TapResponse(success=ok, x=command.x, y=command.y)

        if isinstance(command, SwipeRequest):
            ok = self._inject(
                Gesture.swipe(
                    command.start_x,
                    command.start_y,
                    command.end_x,
                    command.end_y,
                    command.duration,
                )
            )
            return SwipeResponse(
                success=ok,
                start_x=command.start_x,
                start_y=command.start_y,
                end_x=command.end_x,
                end_y=command.end_y,
            )

        if isinstance(command, MultiTouchRequest):
            points = [(t.x, t.y) for t in command.touches]
            ok = self._inject(Gesture.multi_touch(points, command.duration))
            return MultiTouchResponse(success=ok, touch_count=len(points))

        if isinstance(command, StatusRequest):
            return StatusResponse(
                input_service_ready=self._backend_ready(),
                server_running=self.is_running,
                connected_clients=self.connection_count,
            )

        return ErrorResponse(message=f"Unknown command type: {getattr(command, 'type', '?')}")

    def _inject(self, gesture: Gesture) -> bool:
        try:
            return bool(self.backend.dispatch(gesture))
        except Exception:
            logger.exception("Gesture backend raised")
            return False

    def _backend_ready(self) -> bool:
        try:
            return bool(self.backend.is_ready())
        except Exception:
            logger.exception("Gesture backend readiness check raised")
            return False


def serve(host: str, port: int, backend: Optional[InjectionBackend] = None) -> None:
    """Run an agent in the foreground until interrupted."""

    agent = GuestAgentServer(host, port, backend=backend)
    agent.start()
    try:
        while agent.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        agent.stop()
