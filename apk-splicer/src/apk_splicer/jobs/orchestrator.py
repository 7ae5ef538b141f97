"""Installation job orchestrator.

Each job runs its phases sequentially on one worker thread:

  parsing -> extracting -> validating -> preparing-guest -> installing
          -> configuring-auxiliary-data -> completed

Any classified error jumps the job to ``failed``, except during
configuring-auxiliary-data where push failures are only logged. Cancellation
is cooperative and observed at phase boundaries.
"""

from __future__ import annotations

import logging
import shlex
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional

from apk_splicer.bridge.adb import DEFAULT_INSTALL_OPTIONS, DeviceBridge, InstallOptions
from apk_splicer.errors import ApkSplicerError, JobCancelled, JobInternalError
from apk_splicer.jobs.guest import AttachedGuest, GuestProvider
from apk_splicer.jobs.job import InstallationJob, InstalledApp, JobHandle, JobSnapshot
from apk_splicer.jobs.phases import InstallationPhase, can_transition, progress_at_entry
from apk_splicer.package.descriptor import PackageDescriptor
from apk_splicer.package.parser import PackageParser, cleanup_scratch, source_kind_for
from apk_splicer.profiles.profile import ResourceProfile
from apk_splicer.profiles.validator import ResourceValidator

logger = logging.getLogger(__name__)

Listener = Callable[[JobSnapshot], None]


class Orchestrator:
    def __init__(
        self,
        bridge: DeviceBridge,
        *,
        parser: Optional[PackageParser] = None,
        validator: Optional[ResourceValidator] = None,
        guest: Optional[GuestProvider] = None,
        max_workers: int = 2,
        boot_timeout_s: float = 30.0,
        install_options: InstallOptions = DEFAULT_INSTALL_OPTIONS,
        listener: Optional[Listener] = None,
    ) -> None:
        self._bridge = bridge
        self._parser = parser if parser is not None else PackageParser()
        self._validator = validator if validator is not None else ResourceValidator()
        self._guest = guest if guest is not None else AttachedGuest(bridge)
        self._boot_timeout_s = float(boot_timeout_s)
        self._install_options = install_options
        self._listener = listener

        self._lock = threading.Lock()
        self._jobs: Dict[str, InstallationJob] = {}
        self._guest_locks: Dict[str, threading.Lock] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)), thread_name_prefix="apksplicer-job"
        )

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ------------------------------------------------------------- public API

    def start(self, source_path: Path, profile: ResourceProfile) -> JobHandle:
        path = Path(source_path)
        if not path.is_file():
            raise FileNotFoundError(path)
        source_kind_for(path)

        job = InstallationJob(source_path=path, profile=profile)
        with self._lock:
            # Raises RuntimeError after shutdown(); the job is then never registered.
            self._executor.submit(self._run, job)
            self._jobs[job.job_id] = job
        logger.info("Job %s queued: %s (profile %s)", job.job_id, path.name, profile.name)
        return job.handle

    def progress(self, handle: JobHandle) -> JobSnapshot:
        with self._lock:
            return self._get(handle).snapshot()

    def cancel(self, handle: JobHandle) -> bool:
        """Request cancellation; returns False if the job already finished."""

        with self._lock:
            job = self._get(handle)
            if job.phase.terminal:
                return False
            job.cancel_event.set()
        logger.info("Job %s: cancellation requested", handle.job_id)
        return True

    def wait(self, handle: JobHandle, timeout: Optional[float] = None) -> JobSnapshot:
        with self._lock:
            job = self._get(handle)
        job.done_event.wait(timeout)
        return self.progress(handle)

    def release(self, handle: JobHandle) -> None:
        with self._lock:
            job = self._get(handle)
            if not job.phase.terminal:
                raise RuntimeError(f"job {handle.job_id} is still {job.phase.value}")
            del self._jobs[handle.job_id]

    def jobs(self) -> List[JobSnapshot]:
        with self._lock:
            return [job.snapshot() for job in self._jobs.values()]

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            for job in self._jobs.values():
                if not job.phase.terminal:
                    job.cancel_event.set()
        self._executor.shutdown(wait=wait)

    # -------------------------------------------------------------- internals

    def _get(self, handle: JobHandle) -> InstallationJob:
        try:
            return self._jobs[handle.job_id]
        except KeyError:
            raise KeyError(f"unknown job: {handle.job_id}") from None

    def _guest_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._guest_locks.get(key)
            if lock is None:
                lock = self._guest_locks[key] = threading.Lock()
            return lock

    def _notify(self, snapshot: JobSnapshot) -> None:
        if self._listener is None:
            return
        try:
            self._listener(snapshot)
        except Exception:
            logger.exception("Job listener raised for %s", snapshot.job_id)

    def _enter(self, job: InstallationJob, phase: InstallationPhase) -> None:
        if job.cancel_event.is_set():
            raise JobCancelled()
        with self._lock:
            if job.phase is not phase:
                if not can_transition(job.phase, phase):
                    raise RuntimeError(f"illegal transition {job.phase.value} -> {phase.value}")
                job.phase = phase
            job.progress = max(job.progress, progress_at_entry(phase))
            snapshot = job.snapshot()
        logger.info("Job %s: %s (%.0f%%)", job.job_id, phase.value, snapshot.progress * 100)
        self._notify(snapshot)

    def _set_progress(self, job: InstallationJob, value: float) -> None:
        with self._lock:
            job.progress = max(job.progress, min(1.0, value))
            snapshot = job.snapshot()
        self._notify(snapshot)

    def _finish(
        self,
        job: InstallationJob,
        phase: InstallationPhase,
        *,
        error: Optional[ApkSplicerError] = None,
        result: Optional[InstalledApp] = None,
    ) -> None:
        with self._lock:
            if job.phase.terminal:
                return
            job.phase = phase
            job.error = error
            job.result = result
            if phase is InstallationPhase.COMPLETED:
                job.progress = 1.0
            job.finished_at = time.time()
            snapshot = job.snapshot()
        if error is not None:
            logger.error("Job %s failed: %s", job.job_id, error.describe())
        else:
            logger.info("Job %s completed: %s", job.job_id, result.package_id if result else "")
        self._notify(snapshot)

    def _run(self, job: InstallationJob) -> None:
        scratch: Optional[Path] = None
        try:
            self._enter(job, InstallationPhase.PARSING)
            info = self._parser.inspect(job.source_path)

            self._enter(job, InstallationPhase.EXTRACTING)
            if info.source_kind == "xapk":
                scratch = self._parser.make_scratch_dir()
            descriptor = self._parser.extract(info, scratch)

            self._enter(job, InstallationPhase.VALIDATING)
            self._validator.validate(job.profile).unwrap()

            self._enter(job, InstallationPhase.PREPARING_GUEST)
            self._guest.ensure_running(job.profile).unwrap()
            guest_id = self._bridge.ensure_ready(
                self._boot_timeout_s, stop=job.cancel_event
            ).unwrap()

            with self._guest_lock(guest_id or "<default>"):
                self._enter(job, InstallationPhase.INSTALLING)
                self._bridge.install_units(descriptor.units, self._install_options).unwrap()

                self._enter(job, InstallationPhase.CONFIGURING_AUX)
                self._push_aux_files(job, descriptor)

            if job.cancel_event.is_set():
                raise JobCancelled()
            self._finish(
                job,
                InstallationPhase.COMPLETED,
                result=InstalledApp.from_descriptor(descriptor, job.source_path),
            )
        except ApkSplicerError as e:
            if job.cancel_event.is_set() and not isinstance(e, JobCancelled):
                logger.debug("Job %s: discarding result after cancel: %s", job.job_id, e)
                e = JobCancelled()
            self._finish(job, InstallationPhase.FAILED, error=e)
        except Exception as e:
            logger.exception("Job %s crashed", job.job_id)
            self._finish(
                job, InstallationPhase.FAILED, error=JobInternalError(f"{type(e).__name__}: {e}")
            )
        finally:
            cleanup_scratch(scratch)
            job.done_event.set()

    def _push_aux_files(self, job: InstallationJob, descriptor: PackageDescriptor) -> None:
        total = len(descriptor.aux_files)
        if not total:
            return

        base = progress_at_entry(InstallationPhase.CONFIGURING_AUX)
        span = 1.0 - base
        created: set[str] = set()
        for done, aux in enumerate(descriptor.aux_files, start=1):
            if aux.remote_dir not in created:
                res = self._bridge.run_shell(f"mkdir -p {shlex.quote(aux.remote_dir)}")
                if res.ok():
                    created.add(aux.remote_dir)
                else:
                    logger.warning("Could not create %s: %s", aux.remote_dir, res.error)
            pushed = self._bridge.push_file(aux.source_path, aux.remote_path)
            if not pushed.ok():
                logger.warning("Auxiliary data %s not pushed: %s", aux.file_name, pushed.error)
            self._set_progress(job, base + span * done / total)
