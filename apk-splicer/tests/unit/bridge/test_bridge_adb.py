from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Callable

from apk_splicer.bridge.adb import (
    CONSERVATIVE_INSTALL_OPTIONS,
    DeviceBridge,
    InstallOptions,
    detect_adb_path,
)
from apk_splicer.bridge.parsing import DeviceStatus
from apk_splicer.errors import BridgeErrorKind

DEVICES_READY = "List of devices attached\nemulator-5554\tdevice\n"
DEVICES_OFFLINE = "List of devices attached\nemulator-5554\toffline\n"


def _fake_adb(monkeypatch, handler: Callable[[list[str]], tuple[str, str, int]]) -> list[list[str]]:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(list(cmd))
        stdout, stderr, rc = handler(list(cmd))
        return SimpleNamespace(stdout=stdout, stderr=stderr, returncode=rc)

    monkeypatch.setattr(subprocess, "run", fake_run)
    return calls


def _connecting(handler):
    def wrapped(cmd):
        if len(cmd) > 1 and cmd[1] == "connect":
            return f"connected to {cmd[2]}\n", "", 0
        return handler(cmd)

    return wrapped


def _unit(tmp_path: Path, name: str) -> Path:
    p = tmp_path / name
    p.write_bytes(b"apk")
    return p


def test_list_devices_parses_and_remembers_ready_device(monkeypatch) -> None:
    calls = _fake_adb(monkeypatch, lambda cmd: (DEVICES_READY, "", 0))
    bridge = DeviceBridge(adb_path="adb")

    res = bridge.list_devices()

    assert res.ok()
    assert [(d.identifier, d.status) for d in res.value] == [("emulator-5554", DeviceStatus.READY)]
    assert calls == [["adb", "devices"]]
    assert bridge.connection_state().identifier == "emulator-5554"


def test_install_single_unit_uses_install_with_default_flags(monkeypatch, tmp_path: Path) -> None:
    apk = _unit(tmp_path, "app.apk")

    def handler(cmd):
        if cmd[-1] == "devices":
            return DEVICES_READY, "", 0
        return "Performing Streamed Install\nSuccess\n", "", 0

    calls = _fake_adb(monkeypatch, handler)
    res = DeviceBridge(adb_path="adb").install_units([apk])

    assert res.ok()
    assert calls == [
        ["adb", "devices"],
        ["adb", "-s", "emulator-5554", "install", "-r", "-g", str(apk)],
    ]


def test_install_multiple_units_in_one_invocation(monkeypatch, tmp_path: Path) -> None:
    units = [_unit(tmp_path, n) for n in ("base.apk", "split_a.apk", "split_b.apk")]
    calls = _fake_adb(monkeypatch, _connecting(lambda cmd: ("Success\n", "", 0)))

    bridge = DeviceBridge(adb_path="adb")
    assert bridge.connect("127.0.0.1", 5555).unwrap() == "127.0.0.1:5555"
    calls.clear()
    res = bridge.install_units(units, CONSERVATIVE_INSTALL_OPTIONS)

    assert res.ok()
    assert calls == [["adb", "-s", "127.0.0.1:5555", "install-multiple", *map(str, units)]]


def test_install_failure_reports_raw_output(monkeypatch, tmp_path: Path) -> None:
    apk = _unit(tmp_path, "app.apk")

    def handler(cmd):
        if cmd[-1] == "devices":
            return DEVICES_READY, "", 0
        return "", "adb: failed to install app.apk: Failure [INSTALL_FAILED_OLDER_SDK]", 1

    _fake_adb(monkeypatch, handler)
    res = DeviceBridge(adb_path="adb").install_units([apk])

    assert not res.ok()
    assert res.error.kind is BridgeErrorKind.COMMAND_FAILED
    assert "INSTALL_FAILED_OLDER_SDK" in res.error.detail


def test_install_rc_zero_without_success_is_a_failure(monkeypatch, tmp_path: Path) -> None:
    apk = _unit(tmp_path, "app.apk")

    def handler(cmd):
        if cmd[-1] == "devices":
            return DEVICES_READY, "", 0
        return "Failure [INSTALL_PARSE_FAILED_NO_CERTIFICATES]", "", 0

    _fake_adb(monkeypatch, handler)
    res = DeviceBridge(adb_path="adb").install_units([apk])

    assert res.error is not None
    assert res.error.kind is BridgeErrorKind.COMMAND_FAILED


def test_install_without_ready_device_is_connection_lost(monkeypatch, tmp_path: Path) -> None:
    apk = _unit(tmp_path, "app.apk")
    calls = _fake_adb(monkeypatch, lambda cmd: (DEVICES_OFFLINE, "", 0))

    res = DeviceBridge(adb_path="adb").install_units([apk])

    assert res.error is not None
    assert res.error.kind is BridgeErrorKind.CONNECTION_LOST
    assert calls == [["adb", "devices"]]


def test_device_offline_output_clears_hint(monkeypatch, tmp_path: Path) -> None:
    apk = _unit(tmp_path, "app.apk")

    def handler(cmd):
        if cmd[-1] == "devices":
            return DEVICES_READY, "", 0
        return "", "adb: error: device offline", 1

    _fake_adb(monkeypatch, handler)
    bridge = DeviceBridge(adb_path="adb")
    res = bridge.push_file(apk, "/sdcard/Download/app.apk")

    assert res.error is not None
    assert res.error.kind is BridgeErrorKind.CONNECTION_LOST
    assert not bridge.connection_state().connected


def test_missing_adb_is_bridge_unavailable(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    res = DeviceBridge(adb_path="/nope/adb").list_devices()

    assert res.error is not None
    assert res.error.kind is BridgeErrorKind.BRIDGE_UNAVAILABLE


def test_command_timeout_is_command_failed(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(subprocess, "run", fake_run)
    res = DeviceBridge(adb_path="adb", serial="s").version()

    assert res.error is not None
    assert res.error.kind is BridgeErrorKind.COMMAND_FAILED
    assert "timed out" in res.error.detail


def test_ensure_ready_polls_until_boot_completed(monkeypatch) -> None:
    answers = iter(["", "0", "1"])
    calls = _fake_adb(monkeypatch, lambda cmd: (next(answers) + "\n", "", 0))

    bridge = DeviceBridge(adb_path="adb", serial="emulator-5554", poll_interval_s=0.01)
    res = bridge.ensure_ready(timeout_s=5.0)

    assert res.unwrap() == "emulator-5554"
    assert len(calls) == 3
    assert calls[0] == ["adb", "-s", "emulator-5554", "shell", "getprop", "sys.boot_completed"]
    assert bridge.connection_state().connected


def test_ensure_ready_times_out_with_connection_lost(monkeypatch) -> None:
    _fake_adb(monkeypatch, lambda cmd: ("0\n", "", 0))
    bridge = DeviceBridge(adb_path="adb", serial="emulator-5554", poll_interval_s=0.01)

    res = bridge.ensure_ready(timeout_s=0.05)

    assert res.error is not None
    assert res.error.kind is BridgeErrorKind.CONNECTION_LOST


def test_ensure_ready_stops_early_when_event_is_set(monkeypatch) -> None:
    calls = _fake_adb(monkeypatch, lambda cmd: ("0\n", "", 0))
    stop = threading.Event()
    stop.set()
    bridge = DeviceBridge(adb_path="adb", serial="emulator-5554", poll_interval_s=30.0)

    res = bridge.ensure_ready(timeout_s=60.0, stop=stop)

    assert res.error is not None
    assert "aborted" in res.error.detail
    assert len(calls) == 1


def test_shell_verbs_build_expected_commands(monkeypatch) -> None:
    def handler(cmd):
        joined = " ".join(cmd)
        if "pm list packages" in joined:
            return "package:com.a\npackage:com.b\n", "", 0
        if "logcat" in joined:
            return "I/Tag: hello\n", "", 0
        return "Success\n", "", 0

    calls = _fake_adb(monkeypatch, _connecting(handler))
    bridge = DeviceBridge(adb_path="adb")
    bridge.connect("10.0.2.2")
    calls.clear()

    target = "10.0.2.2:5555"
    assert bridge.uninstall("com.a", keep_data=True).ok()
    assert [p.package_id for p in bridge.list_packages().unwrap()] == ["com.a", "com.b"]
    assert bridge.clear_data("com.b").ok()
    assert bridge.logcat(lines=50, filter_spec="*:E").unwrap() == "I/Tag: hello\n"

    assert calls == [
        ["adb", "-s", target, "uninstall", "-k", "com.a"],
        ["adb", "-s", target, "shell", "pm list packages -3"],
        ["adb", "-s", target, "shell", "pm clear com.b"],
        ["adb", "-s", target, "logcat", "-d", "-t", "50", "*:E"],
    ]


def test_disconnect_forgets_connected_guest(monkeypatch) -> None:
    calls = _fake_adb(monkeypatch, _connecting(lambda cmd: ("disconnected 10.0.2.2:5555\n", "", 0)))
    bridge = DeviceBridge(adb_path="adb")
    assert bridge.connect("10.0.2.2").unwrap() == "10.0.2.2:5555"
    assert bridge.connection_state().connected

    assert bridge.disconnect("10.0.2.2:5555").ok()

    assert calls[-1] == ["adb", "disconnect", "10.0.2.2:5555"]
    assert not bridge.connection_state().connected


def test_connect_failure_is_connection_lost(monkeypatch) -> None:
    _fake_adb(
        monkeypatch, lambda cmd: ("cannot connect to 10.0.0.9:5555: Connection refused", "", 1)
    )
    res = DeviceBridge(adb_path="adb").connect("10.0.0.9")

    assert res.error is not None
    assert res.error.kind is BridgeErrorKind.CONNECTION_LOST


def test_package_info_combines_pm_path_and_dumpsys(monkeypatch) -> None:
    def handler(cmd):
        if cmd[-1].startswith("pm path"):
            return "package:/data/app/com.example-1/base.apk\n", "", 0
        return "    versionCode=7 minSdk=21\n    versionName=0.7\n", "", 0

    _fake_adb(monkeypatch, _connecting(handler))
    bridge = DeviceBridge(adb_path="adb")
    bridge.connect("127.0.0.1")
    info = bridge.package_info("com.example").unwrap()

    assert (info.version_name, info.version_code) == ("0.7", 7)
    assert info.install_location == "/data/app/com.example-1/base.apk"


def test_install_options_flags() -> None:
    assert InstallOptions().flags() == ["-r", "-g"]
    assert InstallOptions(allow_downgrade=True).flags() == ["-r", "-d", "-g"]
    assert CONSERVATIVE_INSTALL_OPTIONS.flags() == []


def test_detect_adb_path_precedence(monkeypatch) -> None:
    monkeypatch.setenv("APKSPLICER_ADB_PATH", "/custom/adb")
    assert detect_adb_path("/explicit/adb") == "/explicit/adb"
    assert detect_adb_path() == "/custom/adb"
