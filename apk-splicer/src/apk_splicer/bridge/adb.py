"""adb-backed device bridge.

Every verb is one ``adb`` process invocation whose captured output is turned
into a typed value or a classified ``BridgeError``. Verbs return an
``Outcome`` so callers never have to catch exceptions at this boundary.

The bridge keeps no connection open. The only state it carries is the
identifier of the last device seen in state ``device``; install-class verbs
target it and refuse to run without one.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TypeVar

from apk_splicer.bridge.parsing import (
    DeviceConnection,
    InstalledPackage,
    PackageInfo,
    first_ready,
    is_connect_success,
    is_install_success,
    is_push_success,
    looks_like_connection_lost,
    parse_boot_completed,
    parse_device_list,
    parse_package_info,
    parse_package_list,
)
from apk_splicer.errors import BridgeError, BridgeErrorKind, Outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_GUEST_PORT = 5555
READY_POLL_INTERVAL_S = 2.0
_QUICK_TIMEOUT_S = 10.0

_ADB_CANDIDATES = (
    "/usr/local/bin/adb",
    "/opt/homebrew/bin/adb",
    "/usr/bin/adb",
)


@dataclass(frozen=True)
class AdbResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout + "\n" + self.stderr).strip()


@dataclass(frozen=True)
class InstallOptions:
    replace_existing: bool = True
    allow_downgrade: bool = False
    grant_permissions: bool = True

    def flags(self) -> list[str]:
        out: list[str] = []
        if self.replace_existing:
            out.append("-r")
        if self.allow_downgrade:
            out.append("-d")
        if self.grant_permissions:
            out.append("-g")
        return out


DEFAULT_INSTALL_OPTIONS = InstallOptions()
CONSERVATIVE_INSTALL_OPTIONS = InstallOptions(
    replace_existing=False, allow_downgrade=False, grant_permissions=False
)


@dataclass(frozen=True)
class ConnectionState:
    connected: bool
    identifier: Optional[str]


def detect_adb_path(explicit: Optional[str] = None) -> str:
    """Resolve adb: explicit -> $APKSPLICER_ADB_PATH -> PATH -> well-known locations."""

    if explicit:
        return explicit
    env = os.environ.get("APKSPLICER_ADB_PATH")
    if env:
        return env
    found = shutil.which("adb")
    if found:
        return found
    for candidate in _ADB_CANDIDATES:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    logger.warning("adb not found on PATH or in standard locations; relying on bare 'adb'")
    return "adb"


class DeviceBridge:
    def __init__(
        self,
        *,
        adb_path: Optional[str] = None,
        serial: Optional[str] = None,
        timeout_s: float = 120.0,
        poll_interval_s: float = READY_POLL_INTERVAL_S,
    ) -> None:
        self._adb_path = detect_adb_path(adb_path)
        self._serial = serial
        self._timeout_s = float(timeout_s)
        self._poll_interval_s = float(poll_interval_s)
        self._lock = threading.Lock()
        self._last_ready: Optional[str] = None

    @property
    def adb_path(self) -> str:
        return self._adb_path

    @property
    def serial(self) -> Optional[str]:
        return self._serial

    # ------------------------------------------------------------ process layer

    def _base_cmd(self, identifier: Optional[str]) -> list[str]:
        cmd = [self._adb_path]
        if identifier:
            cmd += ["-s", identifier]
        return cmd

    def _run(
        self,
        args: Sequence[str],
        *,
        identifier: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> AdbResult:
        cmd = self._base_cmd(identifier) + list(args)
        timeout = self._timeout_s if timeout_s is None else float(timeout_s)
        logger.debug("CMD %s", " ".join(shlex.quote(a) for a in cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as e:
            raise BridgeError(
                BridgeErrorKind.BRIDGE_UNAVAILABLE, f"adb executable not found: {self._adb_path}"
            ) from e
        except PermissionError as e:
            raise BridgeError(
                BridgeErrorKind.BRIDGE_UNAVAILABLE, f"adb executable not runnable: {e}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BridgeError(
                BridgeErrorKind.COMMAND_FAILED,
                f"adb {' '.join(args[:2])} timed out after {timeout:.0f}s",
            ) from e
        except OSError as e:
            raise BridgeError(
                BridgeErrorKind.BRIDGE_UNAVAILABLE, f"failed to start adb: {e}"
            ) from e

        result = AdbResult(
            args=cmd,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            returncode=proc.returncode,
        )
        if result.output:
            logger.debug("OUT rc=%s %s", result.returncode, result.output[:500])
        return result

    def _fail(self, result: AdbResult, verb: str) -> BridgeError:
        detail = result.output or f"exit code {result.returncode}"
        if not result.ok() and looks_like_connection_lost(detail):
            self._forget_ready()
            return BridgeError(BridgeErrorKind.CONNECTION_LOST, f"{verb}: {detail}")
        return BridgeError(
            BridgeErrorKind.COMMAND_FAILED, f"{verb} (rc={result.returncode}): {detail}"
        )

    def _attempt(self, verb: str, fn: Callable[[], T]) -> Outcome[T]:
        try:
            return Outcome.success(fn())
        except BridgeError as e:
            if e.kind is BridgeErrorKind.CONNECTION_LOST:
                self._forget_ready()
            logger.warning("%s failed: %s", verb, e.describe())
            return Outcome.failure(e)

    # ------------------------------------------------------- connection state

    def connection_state(self) -> ConnectionState:
        with self._lock:
            ident = self._last_ready
        return ConnectionState(connected=ident is not None, identifier=ident)

    def _remember_ready(self, identifier: str) -> None:
        with self._lock:
            self._last_ready = identifier

    def _forget_ready(self) -> None:
        with self._lock:
            self._last_ready = None

    def _ready_hint(self) -> Optional[str]:
        with self._lock:
            hint = self._last_ready
        if hint is not None and self._serial is not None and hint != self._serial:
            return None
        return hint

    def _list_devices(self) -> List[DeviceConnection]:
        res = self._run(["devices"], timeout_s=_QUICK_TIMEOUT_S)
        if not res.ok():
            raise self._fail(res, "devices")
        devices = parse_device_list(res.stdout)
        ident = first_ready(devices, prefer=self._serial)
        if ident is not None and (self._serial is None or ident == self._serial):
            self._remember_ready(ident)
        else:
            self._forget_ready()
        return devices

    def _require_ready(self) -> str:
        hint = self._ready_hint()
        if hint is not None:
            return hint

        devices = self._list_devices()
        ident = first_ready(devices, prefer=self._serial)
        if ident is None or (self._serial is not None and ident != self._serial):
            wanted = f" matching {self._serial}" if self._serial else ""
            seen = ", ".join(f"{d.identifier}={d.status.value}" for d in devices) or "none"
            raise BridgeError(
                BridgeErrorKind.CONNECTION_LOST,
                f"no device in state 'device'{wanted} (seen: {seen})",
            )
        return ident

    # ------------------------------------------------------------------ verbs

    def version(self) -> Outcome[str]:
        def run() -> str:
            res = self._run(["version"], timeout_s=_QUICK_TIMEOUT_S)
            if not res.ok():
                raise self._fail(res, "version")
            return (res.stdout or res.stderr).strip()

        return self._attempt("version", run)

    def list_devices(self) -> Outcome[List[DeviceConnection]]:
        return self._attempt("devices", self._list_devices)

    def connect(self, host: str = "localhost", port: int = DEFAULT_GUEST_PORT) -> Outcome[str]:
        target = f"{host}:{int(port)}"

        def run() -> str:
            logger.info("Connecting to %s", target)
            res = self._run(["connect", target], timeout_s=_QUICK_TIMEOUT_S)
            if res.ok() and is_connect_success(res.output):
                self._remember_ready(target)
                return target
            raise BridgeError(BridgeErrorKind.CONNECTION_LOST, f"connect {target}: {res.output}")

        return self._attempt("connect", run)

    def disconnect(self, target: Optional[str] = None) -> Outcome[None]:
        def run() -> None:
            args = ["disconnect"] + ([target] if target else [])
            res = self._run(args, timeout_s=_QUICK_TIMEOUT_S)
            self._forget_ready()
            if not res.ok():
                raise self._fail(res, "disconnect")

        return self._attempt("disconnect", run)

    def ensure_ready(
        self,
        timeout_s: float = 30.0,
        *,
        stop: Optional[threading.Event] = None,
    ) -> Outcome[str]:
        """Poll ``sys.boot_completed`` until the guest reports 1 or the timeout elapses.

        Polling happens at a fixed interval. ``stop`` (if given) interrupts the
        wait between polls.
        """

        deadline = time.monotonic() + float(timeout_s)
        last_problem = "boot not completed"
        attempts = 0

        while True:
            attempts += 1
            try:
                ident = self._serial or self._ready_hint()
                if ident is None:
                    ident = first_ready(self._list_devices())
                if ident is None:
                    last_problem = "no device in state 'device'"
                else:
                    res = self._run(
                        ["shell", "getprop", "sys.boot_completed"],
                        identifier=ident,
                        timeout_s=_QUICK_TIMEOUT_S,
                    )
                    if res.ok() and parse_boot_completed(res.stdout):
                        self._remember_ready(ident)
                        logger.info("Device %s ready after %d poll(s)", ident, attempts)
                        return Outcome.success(ident)
                    last_problem = res.output or "boot not completed"
            except BridgeError as e:
                if e.kind is BridgeErrorKind.BRIDGE_UNAVAILABLE:
                    logger.error("Cannot wait for device: %s", e.describe())
                    return Outcome.failure(e)
                last_problem = e.detail

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            delay = min(self._poll_interval_s, remaining)
            if stop is not None:
                if stop.wait(delay):
                    return Outcome.failure(
                        BridgeError(BridgeErrorKind.CONNECTION_LOST, "wait for device aborted")
                    )
            else:
                time.sleep(delay)

        self._forget_ready()
        logger.error("Timed out after %.0fs waiting for device: %s", timeout_s, last_problem)
        return Outcome.failure(
            BridgeError(
                BridgeErrorKind.CONNECTION_LOST,
                f"device not ready after {float(timeout_s):.0f}s: {last_problem}",
            )
        )

    def install_units(
        self,
        paths: Sequence[Path],
        options: InstallOptions = DEFAULT_INSTALL_OPTIONS,
    ) -> Outcome[None]:
        unit_paths = [Path(p) for p in paths]
        if not unit_paths:
            raise ValueError("install_units requires at least one path")

        def run() -> None:
            missing = [str(p) for p in unit_paths if not p.is_file()]
            if missing:
                raise BridgeError(BridgeErrorKind.COMMAND_FAILED, f"missing unit(s): {missing}")
            ident = self._require_ready()
            verb = "install" if len(unit_paths) == 1 else "install-multiple"
            logger.info("Installing %d unit(s) on %s via %s", len(unit_paths), ident, verb)
            args = [verb, *options.flags(), *(str(p) for p in unit_paths)]
            res = self._run(args, identifier=ident)
            if res.ok() and is_install_success(res.output):
                logger.info("Install succeeded on %s", ident)
                return None
            raise self._fail(res, verb)

        return self._attempt("install", run)

    def push_file(self, local: Path, remote: str) -> Outcome[None]:
        local_path = Path(local)

        def run() -> None:
            if not local_path.is_file():
                raise BridgeError(BridgeErrorKind.COMMAND_FAILED, f"no such file: {local_path}")
            ident = self._require_ready()
            logger.info("Pushing %s -> %s", local_path.name, remote)
            res = self._run(["push", str(local_path), str(remote)], identifier=ident)
            if res.ok() and is_push_success(res.output):
                return None
            raise self._fail(res, "push")

        return self._attempt("push", run)

    def run_shell(self, command: str, *, timeout_s: Optional[float] = None) -> Outcome[str]:
        def run() -> str:
            ident = self._require_ready()
            res = self._run(["shell", command], identifier=ident, timeout_s=timeout_s)
            if not res.ok():
                raise self._fail(res, "shell")
            return res.stdout

        return self._attempt("shell", run)

    def uninstall(self, package_id: str, keep_data: bool = False) -> Outcome[None]:
        def run() -> None:
            ident = self._require_ready()
            args = ["uninstall"] + (["-k"] if keep_data else []) + [package_id]
            logger.info("Uninstalling %s from %s (keep_data=%s)", package_id, ident, keep_data)
            res = self._run(args, identifier=ident)
            if res.ok() and is_install_success(res.output):
                return None
            raise self._fail(res, "uninstall")

        return self._attempt("uninstall", run)

    def list_packages(self, include_system: bool = False) -> Outcome[List[InstalledPackage]]:
        def run() -> List[InstalledPackage]:
            ident = self._require_ready()
            cmd = "pm list packages -f" if include_system else "pm list packages -3"
            res = self._run(["shell", cmd], identifier=ident, timeout_s=_QUICK_TIMEOUT_S * 3)
            if not res.ok():
                raise self._fail(res, "pm list packages")
            return parse_package_list(res.stdout)

        return self._attempt("list packages", run)

    def package_info(self, package_id: str) -> Outcome[PackageInfo]:
        quoted = shlex.quote(package_id)

        def run() -> PackageInfo:
            ident = self._require_ready()
            path_res = self._run(["shell", f"pm path {quoted}"], identifier=ident)
            if not path_res.ok():
                raise self._fail(path_res, "pm path")
            if not path_res.stdout.strip():
                raise BridgeError(
                    BridgeErrorKind.COMMAND_FAILED, f"package not installed: {package_id}"
                )
            info_res = self._run(["shell", f"dumpsys package {quoted}"], identifier=ident)
            if not info_res.ok():
                raise self._fail(info_res, "dumpsys package")
            return parse_package_info(package_id, info_res.stdout, path_res.stdout)

        return self._attempt("package info", run)

    def clear_data(self, package_id: str) -> Outcome[None]:
        def run() -> None:
            ident = self._require_ready()
            res = self._run(["shell", f"pm clear {shlex.quote(package_id)}"], identifier=ident)
            if res.ok() and is_install_success(res.output):
                return None
            raise self._fail(res, "pm clear")

        return self._attempt("clear data", run)

    def logcat(self, lines: int = 100, filter_spec: Optional[str] = None) -> Outcome[str]:
        def run() -> str:
            ident = self._require_ready()
            args = ["logcat", "-d", "-t", str(int(lines))] + ([filter_spec] if filter_spec else [])
            res = self._run(args, identifier=ident, timeout_s=_QUICK_TIMEOUT_S * 3)
            if not res.ok():
                raise self._fail(res, "logcat")
            return res.stdout

        return self._attempt("logcat", run)
