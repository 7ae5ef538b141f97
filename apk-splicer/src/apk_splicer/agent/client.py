"""Host-side client for the guest agent."""

from __future__ import annotations

import json
import logging
import socket
from typing import Any, Dict, Iterable, Optional, Tuple

from apk_splicer.agent.messages import DEFAULT_AGENT_PORT, LineReader, encode_dict
from apk_splicer.errors import ProtocolError

logger = logging.getLogger(__name__)


class AgentClientError(RuntimeError):
    pass


class AgentClient:
    def __init__(
        self, host: str = "127.0.0.1", port: int = DEFAULT_AGENT_PORT, *, timeout_s: float = 5.0
    ) -> None:
        self.host = host
        self.port = int(port)
        self.timeout_s = float(timeout_s)
        self.welcome: Optional[Dict[str, Any]] = None
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[LineReader] = None

    def __enter__(self) -> "AgentClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def connect(self) -> Dict[str, Any]:
        if self._sock is not None and self.welcome is not None:
            return self.welcome
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout_s)
        except OSError as e:
            raise AgentClientError(f"cannot reach agent at {self.host}:{self.port}: {e}") from e
        self._sock = sock
        self._reader = LineReader(sock)
        self.welcome = self._read()
        logger.debug("Agent welcome: %s", self.welcome)
        return self.welcome

    def close(self) -> None:
        sock = self._sock
        self._sock = None
        self._reader = None
        if sock is not None:
            sock.close()

    def _read(self) -> Dict[str, Any]:
        if self._reader is None:
            raise AgentClientError("not connected")
        try:
            line = self._reader.readline()
        except OSError as e:
            raise AgentClientError(f"read failed: {e}") from e
        except ProtocolError as e:
            raise AgentClientError(f"unreadable reply: {e.detail}") from e
        if line is None:
            raise AgentClientError("agent closed the connection")
        try:
            data = json.loads(line.decode("utf-8"))
        except ValueError as e:
            raise AgentClientError(f"unreadable reply: {e}") from e
        if not isinstance(data, dict):
            raise AgentClientError(f"unexpected reply: {data!r}")
        return data

    def send_raw(self, line: str) -> Dict[str, Any]:
        """Send one raw line (no validation) and return the reply."""

        self.connect()
        assert self._sock is not None
        payload = line if line.endswith("\n") else line + "\n"
        try:
            self._sock.sendall(payload.encode("utf-8"))
        except OSError as e:
            raise AgentClientError(f"write failed: {e}") from e
        return self._read()

    def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.send_raw(encode_dict(payload).decode("utf-8"))

    def ping(self) -> Dict[str, Any]:
        return self.send({"type": "ping"})

    def status(self) -> Dict[str, Any]:
        return self.send({"type": "status"})

    def tap(self, x: int, y: int, duration: Optional[int] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": "tap", "x": int(x), "y": int(y)}
        if duration is not None:
            payload["duration"] = int(duration)
        return self.send(payload)

    def swipe(
        self,
        start_x: int,
        start_y: int,
        end_x: int,
        end_y: int,
        duration: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": "swipe",
            "startX": int(start_x),
            "startY": int(start_y),
            "endX": int(end_x),
            "endY": int(end_y),
        }
        if duration is not None:
            payload["duration"] = int(duration)
        return self.send(payload)

    def multi_touch(
        self, points: Iterable[Tuple[int, int]], duration: Optional[int] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": "multi_touch",
            "touches": [{"x": int(x), "y": int(y)} for x, y in points],
        }
        if duration is not None:
            payload["duration"] = int(duration)
        return self.send(payload)
