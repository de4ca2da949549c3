# x264q/workers/segment_pool.py
import logging
import os
import re
import shlex
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

from ..errors import EncodeError
from ..models.script import Segment

log = logging.getLogger(__name__)

# "[ 120/500 ], 23.45 fps, ..."
_FRAMES_FPS = re.compile(r"^\[\s*(\d+)\s*/\s*(\d+)\s*\]\s*,\s*(\d+(?:\.\d+)?)\s*fps")
# "encoded 300 frames, ..."
_ENCODED = re.compile(r"^encoded\s+(\d+)\b")

INTERRUPTED = "interrupted"


def parse_progress_line(line: str) -> tuple[int, float] | None:
    """(frames done, fps) of an encoder status line, None if it is not one."""
    line = line.strip()
    if m := _FRAMES_FPS.match(line):
        return int(m.group(1)), float(m.group(3))
    if m := _ENCODED.match(line):
        return int(m.group(1)), 0.0
    return None


@dataclass(frozen=True)
class SegmentResult:
    ordinal: int
    ok: bool
    message: str = ""
    exit_code: int | None = None

    @property
    def interrupted(self) -> bool:
        return not self.ok and self.exit_code is None and INTERRUPTED in self.message


class SegmentState:
    """Live view of one segment's encoder, written by its worker thread."""

    def __init__(self, segment: Segment):
        self.segment = segment
        self.output = ""
        # (frames, fps) replaced as one tuple so readers never see half an update
        self._progress: tuple[int, float] = (0, 0.0)
        self._lock = threading.Lock()
        self._proc: subprocess.Popen | None = None
        self._killed = False

    @property
    def progress(self) -> tuple[int, float]:
        frames, fps = self._progress
        return min(frames, self.segment.frame_count), fps

    def feed(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        self.output = line
        if (parsed := parse_progress_line(line)) is not None:
            self._progress = parsed

    def start(self, argv: Sequence[str]) -> subprocess.Popen | None:
        with self._lock:
            if self._killed:
                return None
            self._proc = subprocess.Popen(
                list(argv),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
            )
            return self._proc

    def kill(self) -> None:
        with self._lock:
            self._killed = True
            proc = self._proc
        if proc is not None and proc.poll() is None:
            proc.kill()


def run_segment(state: SegmentState, cancelled: threading.Event) -> SegmentResult:
    segment = state.segment
    cmdline = " ".join(shlex.quote(c) for c in segment.command)
    if cancelled.is_set():
        return SegmentResult(segment.ordinal, False, f"Segment encoder was {INTERRUPTED}: command = {cmdline}")

    log.info("Encoding segment: Command = %s", cmdline)
    try:
        proc = state.start(segment.command)
    except OSError as e:
        return SegmentResult(segment.ordinal, False, f"Segment command creation failure: {e}")
    if proc is None:
        return SegmentResult(segment.ordinal, False, f"Segment encoder was {INTERRUPTED}: command = {cmdline}")

    with proc:
        for line in proc.stdout:
            state.feed(line)
            if cancelled.is_set():
                break
        if cancelled.is_set():
            proc.kill()
            proc.wait()
            return SegmentResult(segment.ordinal, False, f"Segment encoder was {INTERRUPTED}: command = {cmdline}")
        rc = proc.wait()

    if rc != 0:
        log.error("Segment %s failed: exit code %s, last output = [ %s ]", segment.ordinal, rc, state.output)
        return SegmentResult(segment.ordinal, False, f"Encoder completed with an error = {rc}", rc)
    return SegmentResult(segment.ordinal, True)


def raise_for_failures(results: Sequence[SegmentResult]) -> None:
    for result in results:
        if not result.ok:
            raise EncodeError(f"Segment {result.ordinal}: {result.message}", result.exit_code)


class SegmentWorkerPool:
    """Runs segment encoders, at most ``parallelism`` at a time."""

    def __init__(self, parallelism: int = 0):
        self.parallelism = parallelism if parallelism > 0 else max(1, os.cpu_count() or 1)
        self._cancelled = threading.Event()
        self._states: list[SegmentState] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def total_frames(self) -> int:
        return sum(s.segment.frame_count for s in self._states)

    def encode(self, segments: Sequence[Segment]) -> list[SegmentResult]:
        """Encode every segment and return once all of them have exited."""
        self._states = [SegmentState(s) for s in segments]
        if not self._states:
            return []
        workers = min(self.parallelism, len(self._states))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="x264q-segment") as executor:
            futures = [executor.submit(run_segment, state, self._cancelled) for state in self._states]
            results = [f.result() for f in futures]
        log.info("Encoding completed [ %s segments encoded ]", sum(r.ok for r in results))
        return results

    def cancel(self) -> None:
        self._cancelled.set()
        for state in list(self._states):
            state.kill()

    def progress(self) -> tuple[int, float]:
        """(frames done, summed fps) across all segments."""
        frames, fps = 0, 0.0
        for state in list(self._states):
            done, rate = state.progress
            frames += done
            fps += rate
        return frames, fps

    def outputs(self) -> dict[int, str]:
        return {s.segment.ordinal: s.output for s in self._states}
