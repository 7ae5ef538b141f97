from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple


class InstallationPhase(str, Enum):
    PARSING = "parsing"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    PREPARING_GUEST = "preparing-guest"
    INSTALLING = "installing"
    CONFIGURING_AUX = "configuring-auxiliary-data"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (InstallationPhase.COMPLETED, InstallationPhase.FAILED)


# Forward order; FAILED sits outside it and is reachable from any non-terminal phase.
PHASE_ORDER: Tuple[InstallationPhase, ...] = (
    InstallationPhase.PARSING,
    InstallationPhase.EXTRACTING,
    InstallationPhase.VALIDATING,
    InstallationPhase.PREPARING_GUEST,
    InstallationPhase.INSTALLING,
    InstallationPhase.CONFIGURING_AUX,
    InstallationPhase.COMPLETED,
)

PHASE_WEIGHTS: Dict[InstallationPhase, float] = {
    InstallationPhase.PARSING: 0.1,
    InstallationPhase.EXTRACTING: 0.1,
    InstallationPhase.VALIDATING: 0.1,
    InstallationPhase.PREPARING_GUEST: 0.1,
    InstallationPhase.INSTALLING: 0.2,
    InstallationPhase.CONFIGURING_AUX: 0.2,
}


def phase_index(phase: InstallationPhase) -> int:
    """Position in the forward order; FAILED sorts after everything."""

    if phase is InstallationPhase.FAILED:
        return len(PHASE_ORDER)
    return PHASE_ORDER.index(phase)


def progress_at_entry(phase: InstallationPhase) -> float:
    """Cumulative weight up to and including ``phase``."""

    if phase is InstallationPhase.COMPLETED:
        return 1.0
    total = 0.0
    for p in PHASE_ORDER:
        total += PHASE_WEIGHTS.get(p, 0.0)
        if p is phase:
            break
    return round(total, 6)


def can_transition(current: InstallationPhase, target: InstallationPhase) -> bool:
    if current.terminal:
        return False
    if target is InstallationPhase.FAILED:
        return True
    return phase_index(target) > phase_index(current)
