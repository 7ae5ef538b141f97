"""Wire contract for the guest agent.

Newline-delimited UTF-8 JSON over TCP. Every request carries a ``type``; the
reply's ``type`` is derived from it (``tap`` -> ``tap_response``, ``ping`` ->
``pong``). Field names are camelCase on the wire.
"""

from __future__ import annotations

import json
import socket
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from apk_splicer.errors import ProtocolError, ProtocolErrorKind

PROTOCOL_VERSION = "1.0"
WELCOME_TEXT = "APK Splicer agent ready"
DEFAULT_AGENT_PORT = 8888

DEFAULT_TAP_MS = 100
DEFAULT_SWIPE_MS = 300
MAX_LINE_BYTES = 64 * 1024


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# ---------------------------------------------------------------- requests


class PingRequest(_Request):
    type: Literal["ping"] = "ping"


class TapRequest(_Request):
    type: Literal["tap"] = "tap"
    x: int
    y: int
    duration: int = Field(default=DEFAULT_TAP_MS, ge=1)


class SwipeRequest(_Request):
    type: Literal["swipe"] = "swipe"
    start_x: int = Field(alias="startX")
    start_y: int = Field(alias="startY")
    end_x: int = Field(alias="endX")
    end_y: int = Field(alias="endY")
    duration: int = Field(default=DEFAULT_SWIPE_MS, ge=1)


class TouchPoint(_Request):
    x: int
    y: int
    pressure: float = Field(default=1.0, ge=0.0, le=1.0)


class MultiTouchRequest(_Request):
    type: Literal["multi_touch"] = "multi_touch"
    touches: list[TouchPoint] = Field(min_length=1)
    duration: int = Field(default=DEFAULT_TAP_MS, ge=1)


class StatusRequest(_Request):
    type: Literal["status"] = "status"


GestureCommand = Union[PingRequest, TapRequest, SwipeRequest, MultiTouchRequest, StatusRequest]

REQUEST_TYPES: Dict[str, Type[_Request]] = {
    "ping": PingRequest,
    "tap": TapRequest,
    "swipe": SwipeRequest,
    "multi_touch": MultiTouchRequest,
    "status": StatusRequest,
}


# --------------------------------------------------------------- responses


class WelcomeMessage(_Response):
    type: Literal["welcome"] = "welcome"
    message: str = WELCOME_TEXT
    version: str = PROTOCOL_VERSION


class PongResponse(_Response):
    type: Literal["pong"] = "pong"
    timestamp: int


class TapResponse(_Response):
    type: Literal["tap_response"] = "tap_response"
    success: bool
    x: int
    y: int


class SwipeResponse(_Response):
    type: Literal["swipe_response"] = "swipe_response"
    success: bool
    start_x: int = Field(alias="startX")
    start_y: int = Field(alias="startY")
    end_x: int = Field(alias="endX")
    end_y: int = Field(alias="endY")


class MultiTouchResponse(_Response):
    type: Literal["multi_touch_response"] = "multi_touch_response"
    success: bool
    touch_count: int = Field(alias="touchCount")


class StatusResponse(_Response):
    type: Literal["status_response"] = "status_response"
    input_service_ready: bool = Field(alias="inputServiceReady")
    server_running: bool = Field(alias="serverRunning")
    connected_clients: int = Field(alias="connectedClients")


class ErrorResponse(_Response):
    type: Literal["error"] = "error"
    message: str


GestureResponse = Union[
    PongResponse,
    TapResponse,
    SwipeResponse,
    MultiTouchResponse,
    StatusResponse,
    ErrorResponse,
]


# ----------------------------------------------------------------- framing


def encode(message: BaseModel) -> bytes:
    return (message.model_dump_json(by_alias=True) + "\n").encode("utf-8")


def encode_dict(payload: Dict[str, Any]) -> bytes:
    return (json.dumps(payload, separators=(",", ":")) + "\n").encode("utf-8")


def _format_validation_error(kind: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        problems.append(f"{loc}: {err.get('msg')}")
    return f"Invalid {kind} command: " + "; ".join(problems)


def parse_command(line: Union[str, bytes]) -> GestureCommand:
    """Decode one request line; raises ``ProtocolError`` with a client-facing detail."""

    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(ProtocolErrorKind.MALFORMED, f"Invalid UTF-8: {e}") from e

    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(ProtocolErrorKind.MALFORMED, f"Invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise ProtocolError(ProtocolErrorKind.MALFORMED, "Request must be a JSON object")

    kind = data.get("type")
    if not isinstance(kind, str) or not kind:
        raise ProtocolError(ProtocolErrorKind.MALFORMED, "Missing command type")
    model = REQUEST_TYPES.get(kind)
    if model is None:
        raise ProtocolError(
            ProtocolErrorKind.UNKNOWN_COMMAND_TYPE, f"Unknown command type: {kind}"
        )

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise ProtocolError(ProtocolErrorKind.MALFORMED, _format_validation_error(kind, e)) from e


class LineReader:
    """Buffered newline framing on a raw socket.

    A ``socket.timeout`` from ``readline`` leaves the buffer intact, so the
    caller can simply retry. Returns ``None`` on EOF.

    A line longer than ``max_line_bytes`` is dropped through its newline and
    reported once as a ``ProtocolError``.
    """

    def __init__(self, sock: socket.socket, *, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self._sock = sock
        self._buf = bytearray()
        self._max = int(max_line_bytes)
        self._discarding = False

    def _oversized(self) -> ProtocolError:
        return ProtocolError(
            ProtocolErrorKind.MALFORMED, f"Request line exceeds {self._max} bytes"
        )

    def readline(self) -> Optional[bytes]:
        while True:
            idx = self._buf.find(b"\n")
            if idx >= 0:
                line = bytes(self._buf[:idx])
                del self._buf[: idx + 1]
                if self._discarding or len(line) > self._max:
                    self._discarding = False
                    raise self._oversized()
                return line.rstrip(b"\r")
            if len(self._buf) > self._max:
                self._discarding = True
                self._buf.clear()
            chunk = self._sock.recv(4096)
            if not chunk:
                return None
            self._buf.extend(chunk)
