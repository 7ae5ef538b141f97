"""Embedded APK metadata via ``aapt dump badging``.

``aapt`` prints one fact per line, e.g.::

  package: name='com.example.app' versionCode='42' versionName='1.4.2' ...
  application-label:'Example'

Only the identity fields are needed here. When no ``aapt``/``aapt2`` binary
can be found the reader returns ``None`` and the caller falls back to a
file-name placeholder.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"name='(?P<v>[^']+)'")
_VCODE_RE = re.compile(r"versionCode='(?P<v>[^']*)'")
_VNAME_RE = re.compile(r"versionName='(?P<v>[^']*)'")
_LABEL_RE = re.compile(r"application-label(?:-[\w-]+)?:'(?P<v>[^']*)'")


@dataclass(frozen=True)
class BadgingInfo:
    package_id: str
    version_name: Optional[str] = None
    version_code: Optional[int] = None
    label: Optional[str] = None


def parse_badging(output: str) -> Optional[BadgingInfo]:
    package_id: Optional[str] = None
    version_name: Optional[str] = None
    version_code: Optional[int] = None
    label: Optional[str] = None

    for raw in (output or "").splitlines():
        line = raw.strip()
        if line.startswith("package:"):
            m = _NAME_RE.search(line)
            if m:
                package_id = m.group("v")
            m = _VNAME_RE.search(line)
            if m and m.group("v"):
                version_name = m.group("v")
            m = _VCODE_RE.search(line)
            if m and m.group("v").isdigit():
                version_code = int(m.group("v"))
        elif line.startswith("application-label") and label is None:
            m = _LABEL_RE.match(line)
            if m and m.group("v"):
                label = m.group("v")

    if not package_id:
        return None
    return BadgingInfo(
        package_id=package_id,
        version_name=version_name,
        version_code=version_code,
        label=label,
    )


def find_aapt(explicit: Optional[str] = None) -> Optional[str]:
    """Locate aapt2 or aapt (explicit -> $APKSPLICER_AAPT_PATH -> build-tools -> PATH)."""

    if explicit:
        return explicit
    env = os.environ.get("APKSPLICER_AAPT_PATH")
    if env:
        return env

    for sdk_var in ("ANDROID_HOME", "ANDROID_SDK_ROOT"):
        sdk = os.environ.get(sdk_var)
        if not sdk:
            continue
        build_tools = Path(sdk) / "build-tools"
        if not build_tools.is_dir():
            continue
        for version_dir in sorted(build_tools.iterdir(), reverse=True):
            for name in ("aapt2", "aapt"):
                candidate = version_dir / name
                if candidate.is_file() and os.access(candidate, os.X_OK):
                    return str(candidate)

    for name in ("aapt2", "aapt"):
        found = shutil.which(name)
        if found:
            return found
    return None


class BadgingReader:
    def __init__(self, *, aapt_path: Optional[str] = None, timeout_s: float = 30.0) -> None:
        self._aapt_path = find_aapt(aapt_path)
        self._timeout_s = float(timeout_s)

    @property
    def available(self) -> bool:
        return self._aapt_path is not None

    def read(self, apk_path: Path) -> Optional[BadgingInfo]:
        if self._aapt_path is None:
            return None

        cmd = [self._aapt_path, "dump", "badging", str(apk_path)]
        logger.debug("CMD %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("aapt badging failed for %s: %s", apk_path.name, e)
            return None

        if proc.returncode != 0:
            logger.warning(
                "aapt badging rc=%s for %s: %s",
                proc.returncode,
                apk_path.name,
                (proc.stderr or "").strip()[:200],
            )
            return None
        return parse_badging(proc.stdout)
