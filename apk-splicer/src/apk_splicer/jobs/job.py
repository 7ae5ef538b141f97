"""Installation job records.

``InstallationJob`` is mutable and owned by the orchestrator; everything handed
out to callers (``JobHandle``, ``JobSnapshot``, ``InstalledApp``) is frozen.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from apk_splicer.errors import ApkSplicerError
from apk_splicer.jobs.phases import InstallationPhase
from apk_splicer.package.descriptor import PackageDescriptor
from apk_splicer.profiles.profile import ResourceProfile


@dataclass(frozen=True)
class JobHandle:
    job_id: str


@dataclass(frozen=True)
class InstalledApp:
    package_id: str
    display_name: str
    version: str
    icon: Optional[bytes] = field(default=None, repr=False)
    installed_at: float = field(default_factory=time.time)

    @classmethod
    def from_descriptor(cls, descriptor: PackageDescriptor, source_path: Path) -> "InstalledApp":
        return cls(
            package_id=descriptor.package_id,
            display_name=descriptor.display_name or Path(source_path).stem,
            version=descriptor.version_name or "Unknown",
            icon=descriptor.icon,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package_id,
            "display_name": self.display_name,
            "version": self.version,
            "has_icon": self.icon is not None,
            "installed_at": self.installed_at,
        }


@dataclass(frozen=True)
class JobSnapshot:
    job_id: str
    phase: InstallationPhase
    progress: float
    error: Optional[ApkSplicerError] = None
    result: Optional[InstalledApp] = None

    @property
    def done(self) -> bool:
        return self.phase.terminal

    @property
    def succeeded(self) -> bool:
        return self.phase is InstallationPhase.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "phase": self.phase.value,
            "progress": round(self.progress, 4),
            "error": self.error.to_dict() if self.error is not None else None,
            "result": self.result.to_dict() if self.result is not None else None,
        }


@dataclass
class InstallationJob:
    source_path: Path
    profile: ResourceProfile
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    phase: InstallationPhase = InstallationPhase.PARSING
    progress: float = 0.0
    error: Optional[ApkSplicerError] = None
    result: Optional[InstalledApp] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    done_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def handle(self) -> JobHandle:
        return JobHandle(job_id=self.job_id)

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.job_id,
            phase=self.phase,
            progress=self.progress,
            error=self.error,
            result=self.result,
        )
