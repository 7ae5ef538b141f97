"""APK Splicer.

Installs APK / XAPK packages onto a managed Android guest over adb and serves
the in-guest gesture agent.
"""

__version__ = "0.1.0"

__all__ = [
    "agent",
    "bridge",
    "cli",
    "config",
    "errors",
    "jobs",
    "package",
    "profiles",
]
