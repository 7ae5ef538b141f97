from __future__ import annotations

import json
import os

import pytest

from apk_splicer.agent.server import GuestAgentServer
from apk_splicer.cli import agent


class _NullBackend:
    def is_ready(self) -> bool:
        return True

    def dispatch(self, gesture) -> bool:
        return True


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("APKSPLICER_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def port():
    server = GuestAgentServer("127.0.0.1", 0, backend=_NullBackend(), read_timeout_s=0.2)
    server.start()
    try:
        yield server.address[1]
    finally:
        server.stop()


def test_send_tap(port: int, capsys) -> None:
    code = agent.main(["--host", "127.0.0.1", "--port", str(port), "send", "tap", "5", "6"])

    assert code == 0
    reply = json.loads(capsys.readouterr().out)
    assert reply == {"type": "tap_response", "success": True, "x": 5, "y": 6}


def test_send_raw_error_reply_exits_1(port: int, capsys) -> None:
    code = agent.main(["--host", "127.0.0.1", "--port", str(port), "send", "raw", "{}"])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["message"] == "Missing command type"


def test_unreachable_agent(capsys) -> None:
    server = GuestAgentServer("127.0.0.1", 0, backend=_NullBackend())
    server.start()
    free_port = server.address[1]
    server.stop()

    code = agent.main(["--host", "127.0.0.1", "--port", str(free_port), "send", "ping"])

    assert code == 1
    assert "cannot reach agent" in capsys.readouterr().err
