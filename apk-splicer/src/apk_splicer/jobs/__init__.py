"""Installation jobs: phases, records, guest provisioning and the orchestrator."""

from apk_splicer.jobs.guest import AttachedGuest, GuestProvider
from apk_splicer.jobs.job import InstallationJob, InstalledApp, JobHandle, JobSnapshot
from apk_splicer.jobs.orchestrator import Orchestrator
from apk_splicer.jobs.phases import PHASE_ORDER, InstallationPhase

__all__ = [
    "AttachedGuest",
    "GuestProvider",
    "InstallationJob",
    "InstallationPhase",
    "InstalledApp",
    "JobHandle",
    "JobSnapshot",
    "Orchestrator",
    "PHASE_ORDER",
]
