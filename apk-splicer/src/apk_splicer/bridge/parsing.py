"""Parsers for adb's human-readable output.

adb has no structured output mode for the verbs used here, so everything that
scrapes text lives in this module:

  List of devices attached
  emulator-5554\tdevice
  192.168.1.20:5555\toffline

  package:com.example.app
  package:/data/app/~~abc==/com.example.app-1/base.apk
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

_DEVICE_LIST_HEADER = "List of devices attached"
_PACKAGE_PREFIX = "package:"
_INSTALL_SUCCESS = "Success"

# adb prints these (on stdout or stderr) when the transport went away.
_CONNECTION_LOST_MARKERS = (
    "device offline",
    "device not found",
    "no devices/emulators found",
    "device unauthorized",
    "device still authorizing",
    "error: closed",
)

_DEVICE_NOT_FOUND_RE = re.compile(r"device '[^']*' not found")
_VERSION_NAME_RE = re.compile(r"versionName=(\S+)")
_VERSION_CODE_RE = re.compile(r"versionCode=(\d+)")


class DeviceStatus(str, Enum):
    READY = "device"
    OFFLINE = "offline"
    UNAUTHORIZED = "unauthorized"
    UNKNOWN = "unknown"

    @classmethod
    def from_token(cls, token: str) -> "DeviceStatus":
        for status in cls:
            if status.value == token:
                return status
        return cls.UNKNOWN


@dataclass(frozen=True)
class DeviceConnection:
    identifier: str
    status: DeviceStatus

    @property
    def ready(self) -> bool:
        return self.status is DeviceStatus.READY


@dataclass(frozen=True)
class InstalledPackage:
    package_id: str
    is_system_app: bool = False


@dataclass(frozen=True)
class PackageInfo:
    package_id: str
    version_name: str
    version_code: int
    install_location: str

    @property
    def is_system_app(self) -> bool:
        return "/system/" in self.install_location


def parse_device_list(output: str) -> List[DeviceConnection]:
    devices: List[DeviceConnection] = []
    for raw in (output or "").splitlines():
        line = raw.strip()
        if not line or line.startswith(_DEVICE_LIST_HEADER) or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        devices.append(
            DeviceConnection(identifier=parts[0], status=DeviceStatus.from_token(parts[1]))
        )
    return devices


def is_install_success(output: str) -> bool:
    return _INSTALL_SUCCESS in (output or "")


def is_push_success(output: str) -> bool:
    return "pushed" in (output or "")


def is_connect_success(output: str) -> bool:
    txt = (output or "").lower()
    if "cannot connect" in txt or "failed to connect" in txt:
        return False
    return "connected" in txt


def looks_like_connection_lost(output: str) -> bool:
    txt = (output or "").lower()
    if any(marker in txt for marker in _CONNECTION_LOST_MARKERS):
        return True
    return _DEVICE_NOT_FOUND_RE.search(txt) is not None


def parse_package_list(output: str, *, is_system_app: bool = False) -> List[InstalledPackage]:
    """Parse ``pm list packages`` output.

    With ``-f`` each line is ``package:<apk path>=<id>``; the path then decides
    whether the package is a system app.
    """

    packages: List[InstalledPackage] = []
    for raw in (output or "").splitlines():
        line = raw.strip()
        if line.startswith(_PACKAGE_PREFIX):
            package_id = line[len(_PACKAGE_PREFIX) :]
            if package_id.startswith("/") and "=" in package_id:
                apk_path, package_id = package_id.rsplit("=", 1)
                packages.append(
                    InstalledPackage(package_id=package_id, is_system_app="/system/" in apk_path)
                )
                continue
            if package_id:
                packages.append(
                    InstalledPackage(package_id=package_id, is_system_app=is_system_app)
                )
    return packages


def parse_boot_completed(output: str) -> bool:
    return (output or "").strip() == "1"


def parse_package_info(package_id: str, dumpsys_output: str, path_output: str) -> PackageInfo:
    version_name = "Unknown"
    version_code = 0
    install_location = "Unknown"

    m = _VERSION_NAME_RE.search(dumpsys_output or "")
    if m:
        version_name = m.group(1)
    m = _VERSION_CODE_RE.search(dumpsys_output or "")
    if m:
        version_code = int(m.group(1))

    for raw in (path_output or "").splitlines():
        line = raw.strip()
        if line.startswith(_PACKAGE_PREFIX):
            install_location = line[len(_PACKAGE_PREFIX) :]
            break

    return PackageInfo(
        package_id=package_id,
        version_name=version_name,
        version_code=version_code,
        install_location=install_location,
    )


def first_ready(devices: List[DeviceConnection], prefer: Optional[str] = None) -> Optional[str]:
    """Pick the preferred identifier if it is ready, else the first ready device."""

    ready = [d.identifier for d in devices if d.ready]
    if prefer is not None and prefer in ready:
        return prefer
    return ready[0] if ready else None
