"""adb device bridge: one subprocess per verb, typed results."""

from apk_splicer.bridge.adb import (
    CONSERVATIVE_INSTALL_OPTIONS,
    DEFAULT_INSTALL_OPTIONS,
    AdbResult,
    ConnectionState,
    DeviceBridge,
    InstallOptions,
    detect_adb_path,
)
from apk_splicer.bridge.parsing import DeviceConnection, DeviceStatus, InstalledPackage, PackageInfo

__all__ = [
    "AdbResult",
    "CONSERVATIVE_INSTALL_OPTIONS",
    "ConnectionState",
    "DEFAULT_INSTALL_OPTIONS",
    "DeviceBridge",
    "DeviceConnection",
    "DeviceStatus",
    "InstallOptions",
    "InstalledPackage",
    "PackageInfo",
    "detect_adb_path",
]
