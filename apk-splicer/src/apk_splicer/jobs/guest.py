"""Guest provisioning capability.

Starting and stopping virtual machines is someone else's job; the installer
only needs "make sure a guest is running and reachable". ``AttachedGuest``
covers the common case of a guest that is already up (emulator, device, or a
VM exposing adb over TCP).
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from apk_splicer.bridge.adb import DEFAULT_GUEST_PORT, DeviceBridge
from apk_splicer.errors import Outcome
from apk_splicer.profiles.profile import ResourceProfile

logger = logging.getLogger(__name__)


class GuestProvider(Protocol):
    def ensure_running(self, profile: ResourceProfile) -> Outcome[None]: ...


class AttachedGuest:
    def __init__(
        self,
        bridge: DeviceBridge,
        *,
        host: Optional[str] = None,
        port: int = DEFAULT_GUEST_PORT,
    ) -> None:
        self._bridge = bridge
        self._host = host
        self._port = int(port)

    def ensure_running(self, profile: ResourceProfile) -> Outcome[None]:
        if not self._host:
            logger.debug("Using attached guest for profile %s", profile.name)
            return Outcome.success(None)
        res = self._bridge.connect(self._host, self._port)
        if not res.ok():
            return Outcome.failure(res.error)  # type: ignore[arg-type]
        return Outcome.success(None)
