from __future__ import annotations

from apk_splicer.jobs.phases import (
    PHASE_ORDER,
    InstallationPhase,
    can_transition,
    phase_index,
    progress_at_entry,
)


def test_progress_at_entry_is_cumulative() -> None:
    expected = [0.1, 0.2, 0.3, 0.4, 0.6, 0.8, 1.0]
    assert [progress_at_entry(p) for p in PHASE_ORDER] == expected


def test_transitions_only_move_forward_or_fail() -> None:
    assert can_transition(InstallationPhase.PARSING, InstallationPhase.EXTRACTING)
    assert can_transition(InstallationPhase.INSTALLING, InstallationPhase.FAILED)
    assert not can_transition(InstallationPhase.INSTALLING, InstallationPhase.PARSING)
    assert not can_transition(InstallationPhase.COMPLETED, InstallationPhase.FAILED)
    assert not can_transition(InstallationPhase.FAILED, InstallationPhase.COMPLETED)


def test_failed_sorts_after_every_phase() -> None:
    assert phase_index(InstallationPhase.FAILED) > phase_index(InstallationPhase.COMPLETED)
    assert InstallationPhase.FAILED.terminal and InstallationPhase.COMPLETED.terminal
    assert not InstallationPhase.CONFIGURING_AUX.terminal
