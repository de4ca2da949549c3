# x264q/models/job.py
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from .script import ClipDimension, InputClip, Segment


class JobStatus(Enum):
    QUEUED = "Queued"
    RUNNING = "Running"
    FINISHED = "Finished"
    CANCELLED = "Cancelled"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.FINISHED, JobStatus.CANCELLED, JobStatus.FAILED)

    def __str__(self) -> str:
        return self.value


_ALLOWED = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.FINISHED, JobStatus.CANCELLED, JobStatus.FAILED},
}

DEFAULT_PRESET_COMMAND = (
    "--level 4.1 --preset placebo --cabac --ref 5 --deblock -3:-3"
    " --partitions all --me umh --subme 8 --psy-rd 1.00:0.00"
    " --merange 24 --trellis 2 --8x8dct"
    " --cqm flat --deadzone-inter 21 --deadzone-intra 11"
    " --chroma-qp-offset 0"
    " --threads 12 --lookahead-threads 2"
    " --no-dct-decimate"
    " --bframes 6 --b-pyramid normal --b-adapt 2 --b-bias 0 --direct auto"
    " --weightp 2 --keyint 500 --min-keyint 50"
    " --scenecut 40 --rc-lookahead 40"
    " --crf 20.0 --qcomp 0.60 --qpmin 10 --qpmax 51 --qpstep 4"
    " --ipratio 1.40 --aq-mode 1 --aq-strength 1.00"
)


@dataclass(frozen=True)
class EncoderPreset:
    name: str
    command: str = field(compare=False)

    @classmethod
    def default(cls) -> "EncoderPreset":
        return cls("Default", DEFAULT_PRESET_COMMAND)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class EncoderParameters:
    x264_path: str = "x264"
    mkvmerge_path: str = "mkvmerge"
    job_limit: int = 0  # 0 => one encoder per CPU

    @property
    def effective_job_limit(self) -> int:
        if self.job_limit > 0:
            return self.job_limit
        return max(1, os.cpu_count() or 1)


@dataclass(eq=False)
class Job:
    name: str
    input_clips: list[InputClip]
    target_dimension: ClipDimension
    output_dir: Path
    output_sar: str = "16:15"
    preset: EncoderPreset = field(default_factory=EncoderPreset.default)
    cleanup: bool = True
    status: JobStatus = JobStatus.QUEUED
    message: str = ""
    segments: list[Segment] = field(default_factory=list)
    time_started: float | None = None
    time_completed: float | None = None

    @property
    def frame_count(self) -> int:
        return sum(c.encoded_frame_count for c in self.input_clips)

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir) / f"{self.name}.mkv"

    def transition(self, status: JobStatus, message: str | None = None) -> None:
        if status not in _ALLOWED.get(self.status, set()):
            raise ValueError(f"Job {self.name!r}: cannot go from {self.status} to {status}")
        self.status = status
        if message is not None:
            self.message = message

    def requeued(self) -> "Job":
        return replace(self, status=JobStatus.QUEUED, message="", segments=[],
                       time_started=None, time_completed=None)


@dataclass(frozen=True)
class ProgressSnapshot:
    frames_done_current_job: int = 0
    total_frames_current_job: int = 0
    fps: float = 0.0
    frames_done_total: int = 0
    total_frames_all: int = 0
    jobs_done: int = 0
    jobs_total: int = 0

    @property
    def current_job_fraction(self) -> float:
        if self.total_frames_current_job <= 0:
            return 0.0
        return self.frames_done_current_job / self.total_frames_current_job

    @property
    def total_fraction(self) -> float:
        if self.total_frames_all <= 0:
            return 0.0
        return self.frames_done_total / self.total_frames_all
