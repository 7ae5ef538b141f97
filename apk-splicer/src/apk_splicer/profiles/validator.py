"""Check a resource profile against what the host can actually give a guest."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import psutil

from apk_splicer.errors import Outcome, ResourceError, ResourceErrorKind
from apk_splicer.profiles.profile import ResourceProfile

logger = logging.getLogger(__name__)

# A guest may claim at most this share of the host's physical memory.
MEMORY_HEADROOM = 0.8

MIB = 1024 * 1024


@dataclass(frozen=True)
class HostCapacity:
    memory_bytes: int
    logical_cores: int

    @classmethod
    def detect(cls) -> "HostCapacity":
        total = psutil.virtual_memory().total
        cores = psutil.cpu_count(logical=True) or 1
        return cls(memory_bytes=int(total), logical_cores=int(cores))

    @property
    def memory_mb(self) -> int:
        return self.memory_bytes // MIB

    @property
    def memory_budget_bytes(self) -> float:
        return self.memory_bytes * MEMORY_HEADROOM


class ResourceValidator:
    def __init__(self, host: Callable[[], HostCapacity] = HostCapacity.detect) -> None:
        self._host = host

    def validate(self, profile: ResourceProfile) -> Outcome[None]:
        host = self._host()

        if profile.memory_mb * MIB > host.memory_budget_bytes:
            err = ResourceError(
                ResourceErrorKind.INSUFFICIENT_MEMORY,
                required=f"{profile.memory_mb} MB",
                available=f"{int(host.memory_budget_bytes // MIB)} MB "
                f"({int(MEMORY_HEADROOM * 100)}% of {host.memory_mb} MB)",
            )
            logger.warning("Profile %s rejected: %s", profile.name, err.describe())
            return Outcome.failure(err)

        if profile.cpu_count > host.logical_cores:
            err = ResourceError(
                ResourceErrorKind.INSUFFICIENT_CORES,
                required=f"{profile.cpu_count} cores",
                available=f"{host.logical_cores} cores",
            )
            logger.warning("Profile %s rejected: %s", profile.name, err.describe())
            return Outcome.failure(err)

        logger.debug("Profile %s fits host %s", profile.name, host)
        return Outcome.success(None)
