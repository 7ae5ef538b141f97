from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import List

import pytest
from apksplicer_fakes import (
    FakeBadging,
    FakeBridge,
    fixed_host,
    make_profile,
    write_apk,
    write_xapk,
)

from apk_splicer.errors import (
    BridgeError,
    BridgeErrorKind,
    JobCancelled,
    Outcome,
    ParseError,
    ParseErrorKind,
    ResourceErrorKind,
)
from apk_splicer.jobs.job import JobSnapshot
from apk_splicer.jobs.orchestrator import Orchestrator
from apk_splicer.jobs.phases import PHASE_ORDER, InstallationPhase, phase_index
from apk_splicer.package.parser import PackageParser
from apk_splicer.profiles.validator import ResourceValidator

MANIFEST = {"package_name": "com.example.game", "name": "Example Game", "version_name": "2.0"}
OBB_DIR = "Android/obb/com.example.game"
REMOTE = "/sdcard/Android/obb/com.example.game"


class Recorder:
    def __init__(self) -> None:
        self.snapshots: List[JobSnapshot] = []
        self._lock = threading.Lock()

    def __call__(self, snapshot: JobSnapshot) -> None:
        with self._lock:
            self.snapshots.append(snapshot)

    def phases(self) -> List[InstallationPhase]:
        out: List[InstallationPhase] = []
        for s in self.snapshots:
            if not out or out[-1] is not s.phase:
                out.append(s.phase)
        return out


def _orchestrator(
    tmp_path: Path,
    bridge: FakeBridge,
    *,
    recorder: Recorder | None = None,
    host=None,
    max_workers: int = 2,
) -> Orchestrator:
    return Orchestrator(
        bridge,  # type: ignore[arg-type]
        parser=PackageParser(badging=FakeBadging(), scratch_root=tmp_path / "scratch"),
        validator=ResourceValidator(host=host or fixed_host()),
        max_workers=max_workers,
        boot_timeout_s=1.0,
        listener=recorder,
    )


def test_bundle_install_runs_every_phase_to_completion(tmp_path: Path) -> None:
    xapk = write_xapk(
        tmp_path / "game.xapk",
        manifest=MANIFEST,
        units=("split_b.apk", "base.apk", "split_a.apk"),
    )
    bridge = FakeBridge()
    recorder = Recorder()

    with _orchestrator(tmp_path, bridge, recorder=recorder) as orch:
        handle = orch.start(xapk, make_profile())
        snap = orch.wait(handle, timeout=10)

    assert snap.phase is InstallationPhase.COMPLETED
    assert snap.progress == 1.0
    assert snap.error is None
    assert snap.result is not None
    assert snap.result.package_id == "com.example.game"
    assert snap.result.display_name == "Example Game"
    assert snap.result.version == "2.0"

    assert recorder.phases() == list(PHASE_ORDER)
    assert recorder.snapshots[0].progress == pytest.approx(0.1)
    indices = [phase_index(s.phase) for s in recorder.snapshots]
    assert indices == sorted(indices)
    progress = [s.progress for s in recorder.snapshots]
    assert progress == sorted(progress)

    assert bridge.installed == [["base.apk", "split_a.apk", "split_b.apk"]]
    assert "push_file" not in bridge.verbs()
    assert list((tmp_path / "scratch").iterdir()) == []


def test_single_apk_result_falls_back_to_file_stem(tmp_path: Path) -> None:
    apk = write_apk(tmp_path / "Calculator.apk")
    with _orchestrator(tmp_path, FakeBridge()) as orch:
        snap = orch.wait(orch.start(apk, make_profile()), timeout=10)

    assert snap.succeeded
    assert snap.result.package_id == "com.unknown.calculator"
    assert snap.result.display_name == "Calculator"
    assert snap.result.version == "Unknown"


def test_aux_data_is_pushed_after_creating_its_directory(tmp_path: Path) -> None:
    xapk = write_xapk(
        tmp_path / "game.xapk",
        manifest=MANIFEST,
        extra=(
            (f"{OBB_DIR}/main.1.com.example.game.obb", b"m"),
            (f"{OBB_DIR}/patch.1.com.example.game.obb", b"p"),
        ),
    )
    bridge = FakeBridge()
    recorder = Recorder()
    with _orchestrator(tmp_path, bridge, recorder=recorder) as orch:
        snap = orch.wait(orch.start(xapk, make_profile()), timeout=10)

    assert snap.succeeded
    assert bridge.calls[-3:] == [
        ("run_shell", "mkdir -p " + REMOTE),
        ("push_file", ("main.1.com.example.game.obb", REMOTE + "/main.1.com.example.game.obb")),
        ("push_file", ("patch.1.com.example.game.obb", REMOTE + "/patch.1.com.example.game.obb")),
    ]
    aux = [
        s.progress
        for s in recorder.snapshots
        if s.phase is InstallationPhase.CONFIGURING_AUX
    ]
    assert aux == pytest.approx([0.8, 0.9, 1.0])


def test_aux_push_failure_still_completes(tmp_path: Path) -> None:
    xapk = write_xapk(
        tmp_path / "game.xapk",
        manifest=MANIFEST,
        extra=((f"{OBB_DIR}/main.1.com.example.game.obb", b"m"),),
    )
    lost = BridgeError(BridgeErrorKind.COMMAND_FAILED, "remote write failed")
    bridge = FakeBridge(push=Outcome.failure(lost), shell=Outcome.failure(lost))
    recorder = Recorder()

    with _orchestrator(tmp_path, bridge, recorder=recorder) as orch:
        snap = orch.wait(orch.start(xapk, make_profile()), timeout=10)

    assert snap.phase is InstallationPhase.COMPLETED
    assert snap.error is None
    assert InstallationPhase.FAILED not in recorder.phases()


def test_install_failure_marks_job_failed(tmp_path: Path) -> None:
    apk = write_apk(tmp_path / "app.apk")
    err = BridgeError(BridgeErrorKind.COMMAND_FAILED, "Failure [INSTALL_FAILED_NO_MATCHING_ABIS]")
    bridge = FakeBridge(install=Outcome.failure(err))

    with _orchestrator(tmp_path, bridge) as orch:
        snap = orch.wait(orch.start(apk, make_profile()), timeout=10)

    assert snap.phase is InstallationPhase.FAILED
    assert snap.error is err
    assert snap.progress == pytest.approx(0.6)
    assert snap.result is None


def test_resource_rejection_happens_before_guest_work(tmp_path: Path) -> None:
    apk = write_apk(tmp_path / "app.apk")
    bridge = FakeBridge()

    with _orchestrator(tmp_path, bridge, host=fixed_host(memory_mb=2048)) as orch:
        snap = orch.wait(orch.start(apk, make_profile(memory_mb=4096)), timeout=10)

    assert snap.phase is InstallationPhase.FAILED
    assert snap.error.kind is ResourceErrorKind.INSUFFICIENT_MEMORY
    assert bridge.calls == []


def test_parse_failure_is_recorded_verbatim(tmp_path: Path) -> None:
    xapk = write_xapk(tmp_path / "splits.xapk", manifest=MANIFEST, units=("split_a.apk",))
    with _orchestrator(tmp_path, FakeBridge()) as orch:
        snap = orch.wait(orch.start(xapk, make_profile()), timeout=10)

    assert snap.phase is InstallationPhase.FAILED
    assert isinstance(snap.error, ParseError)
    assert snap.error.kind is ParseErrorKind.NO_BASE_UNIT
    assert list((tmp_path / "scratch").iterdir()) == []


def test_cancel_during_guest_wait_fails_with_cancelled(tmp_path: Path) -> None:
    apk = write_apk(tmp_path / "app.apk")
    bridge = FakeBridge(ready_delay_s=30.0)

    with _orchestrator(tmp_path, bridge) as orch:
        handle = orch.start(apk, make_profile())
        deadline = time.monotonic() + 10
        while orch.progress(handle).phase is not InstallationPhase.PREPARING_GUEST:
            assert time.monotonic() < deadline
            time.sleep(0.01)

        assert orch.cancel(handle)
        snap = orch.wait(handle, timeout=10)

    assert snap.phase is InstallationPhase.FAILED
    assert isinstance(snap.error, JobCancelled)
    assert "install_units" not in bridge.verbs()
    assert orch.cancel(handle) is False


def test_start_fails_fast_without_creating_a_job(tmp_path: Path) -> None:
    bad = tmp_path / "archive.zip"
    bad.write_bytes(b"PK")

    with _orchestrator(tmp_path, FakeBridge()) as orch:
        with pytest.raises(ParseError) as excinfo:
            orch.start(bad, make_profile())
        assert excinfo.value.kind is ParseErrorKind.UNSUPPORTED_EXTENSION

        with pytest.raises(FileNotFoundError):
            orch.start(tmp_path / "missing.apk", make_profile())

        assert orch.jobs() == []


def test_start_after_shutdown_creates_no_job(tmp_path: Path) -> None:
    apk = write_apk(tmp_path / "app.apk")
    orch = _orchestrator(tmp_path, FakeBridge())
    orch.shutdown()

    with pytest.raises(RuntimeError):
        orch.start(apk, make_profile())

    assert orch.jobs() == []


class BlockingInstallBridge(FakeBridge):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def install_units(self, paths, options=None):
        self.entered.set()
        self.release.wait(10)
        return super().install_units(paths)


def test_cancel_during_install_discards_successful_result(tmp_path: Path) -> None:
    xapk = write_xapk(
        tmp_path / "game.xapk",
        manifest=MANIFEST,
        extra=((f"{OBB_DIR}/main.1.com.example.game.obb", b"m"),),
    )
    bridge = BlockingInstallBridge()

    with _orchestrator(tmp_path, bridge) as orch:
        handle = orch.start(xapk, make_profile())
        assert bridge.entered.wait(10)

        assert orch.cancel(handle)
        bridge.release.set()
        snap = orch.wait(handle, timeout=10)

    assert bridge.installed == [["base.apk"]]
    assert snap.phase is InstallationPhase.FAILED
    assert isinstance(snap.error, JobCancelled)
    assert snap.result is None
    assert snap.progress == pytest.approx(0.6)
    assert "push_file" not in bridge.verbs()
    assert list((tmp_path / "scratch").iterdir()) == []


def test_release_drops_finished_jobs(tmp_path: Path) -> None:
    apk = write_apk(tmp_path / "app.apk")
    with _orchestrator(tmp_path, FakeBridge()) as orch:
        handle = orch.start(apk, make_profile())
        orch.wait(handle, timeout=10)
        assert [s.job_id for s in orch.jobs()] == [handle.job_id]

        orch.release(handle)

        assert orch.jobs() == []
        with pytest.raises(KeyError):
            orch.progress(handle)


class SlowInstallBridge(FakeBridge):
    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.max_active = 0
        self._gate = threading.Lock()

    def install_units(self, paths, options=None):
        with self._gate:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.05)
        with self._gate:
            self.active -= 1
        return super().install_units(paths)


def test_installs_to_the_same_guest_are_serialized(tmp_path: Path) -> None:
    apks = [write_apk(tmp_path / f"app{i}.apk") for i in range(3)]
    bridge = SlowInstallBridge()

    with _orchestrator(tmp_path, bridge, max_workers=3) as orch:
        handles = [orch.start(p, make_profile()) for p in apks]
        snaps = [orch.wait(h, timeout=10) for h in handles]

    assert all(s.succeeded for s in snaps)
    assert bridge.max_active == 1
    assert len(bridge.installed) == 3
