"""Gesture injection backends.

A ``Gesture`` is a set of strokes that start at fixed offsets from each other.
Backends report completion as a plain boolean.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, Tuple

from apk_splicer.bridge.adb import DeviceBridge

logger = logging.getLogger(__name__)

# Pointers of a multi-touch gesture start this far apart.
MULTI_TOUCH_STAGGER_MS = 10


@dataclass(frozen=True)
class Stroke:
    start_x: int
    start_y: int
    end_x: int
    end_y: int
    duration_ms: int
    start_delay_ms: int = 0


@dataclass(frozen=True)
class Gesture:
    strokes: Tuple[Stroke, ...]

    @classmethod
    def tap(cls, x: int, y: int, duration_ms: int) -> "Gesture":
        return cls(strokes=(Stroke(x, y, x, y, duration_ms),))

    @classmethod
    def swipe(
        cls, start_x: int, start_y: int, end_x: int, end_y: int, duration_ms: int
    ) -> "Gesture":
        return cls(strokes=(Stroke(start_x, start_y, end_x, end_y, duration_ms),))

    @classmethod
    def multi_touch(cls, points: Sequence[Tuple[int, int]], duration_ms: int) -> "Gesture":
        return cls(
            strokes=tuple(
                Stroke(x, y, x, y, duration_ms, start_delay_ms=i * MULTI_TOUCH_STAGGER_MS)
                for i, (x, y) in enumerate(points)
            )
        )


class InjectionBackend(Protocol):
    def is_ready(self) -> bool: ...

    def dispatch(self, gesture: Gesture) -> bool: ...


def stroke_args(stroke: Stroke) -> list[str]:
    """``input`` arguments for one stroke; a tap is a zero-length swipe."""

    return [
        "swipe",
        str(stroke.start_x),
        str(stroke.start_y),
        str(stroke.end_x),
        str(stroke.end_y),
        str(stroke.duration_ms),
    ]


class ShellInputBackend:
    """Drives Android's ``input`` tool, one process per stroke.

    Calls are serialized; strokes of one multi-touch gesture run on their own
    threads so they overlap.
    """

    def __init__(
        self,
        execute: Callable[[Sequence[str]], bool],
        *,
        ready: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._execute = execute
        self._ready = ready or (lambda: True)
        self._lock = threading.Lock()

    @classmethod
    def local(cls, input_bin: str = "input", timeout_s: float = 10.0) -> "ShellInputBackend":
        """Run ``input`` directly (agent running inside the guest)."""

        def execute(args: Sequence[str]) -> bool:
            try:
                proc = subprocess.run(
                    [input_bin, *args], capture_output=True, text=True, timeout=timeout_s
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning("input %s failed: %s", args[0] if args else "", e)
                return False
            if proc.returncode != 0:
                logger.warning("input exited %s: %s", proc.returncode, proc.stderr.strip())
            return proc.returncode == 0

        return cls(execute, ready=lambda: shutil.which(input_bin) is not None)

    @classmethod
    def over_bridge(cls, bridge: DeviceBridge) -> "ShellInputBackend":
        """Run ``input`` through ``adb shell`` (agent running on the host)."""

        def execute(args: Sequence[str]) -> bool:
            return bridge.run_shell("input " + " ".join(args)).ok()

        def ready() -> bool:
            devices = bridge.list_devices()
            return devices.ok() and any(d.ready for d in devices.value or [])

        return cls(execute, ready=ready)

    def is_ready(self) -> bool:
        return bool(self._ready())

    def dispatch(self, gesture: Gesture) -> bool:
        if not gesture.strokes:
            return False
        with self._lock:
            if len(gesture.strokes) == 1:
                return self._execute(stroke_args(gesture.strokes[0]))
            return self._dispatch_parallel(gesture.strokes)

    def _dispatch_parallel(self, strokes: Sequence[Stroke]) -> bool:
        results = [False] * len(strokes)

        def run(i: int, stroke: Stroke) -> None:
            if stroke.start_delay_ms:
                time.sleep(stroke.start_delay_ms / 1000.0)
            results[i] = self._execute(stroke_args(stroke))

        threads = [
            threading.Thread(target=run, args=(i, s), daemon=True) for i, s in enumerate(strokes)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return all(results)
