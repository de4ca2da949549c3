# x264q/encoder/builder.py
import logging
import shlex
from pathlib import Path

from ..errors import SegmentBuildError
from ..models.job import EncoderParameters, Job
from ..models.script import MergedScript, Segment
from ..utils.paths import segment_file
from .merger import merge_slices
from .planner import plan_segments

log = logging.getLogger(__name__)

SCRIPT_EXT = ".avs"
ENCODED_EXT = ".264"


def encoder_command(params: EncoderParameters, job: Job, script_path: Path,
                    output_path: Path) -> tuple[str, ...]:
    try:
        preset_args = shlex.split(job.preset.command)
    except ValueError as e:
        raise SegmentBuildError(f"Invalid encoder preset {job.preset.name!r}: {e}") from e
    return (
        params.x264_path,
        *preset_args,
        "--stitchable",
        "--sar", job.output_sar,
        "--output", str(output_path),
        str(script_path),
    )


def write_segment(job: Job, params: EncoderParameters, ordinal: int,
                  merged: MergedScript) -> Segment:
    out_dir = Path(job.output_dir)
    script_path = segment_file(out_dir, job.name, ordinal, SCRIPT_EXT)
    output_path = segment_file(out_dir, job.name, ordinal, ENCODED_EXT)
    script_path.write_text("\n".join(c.text for c in merged.commands) + "\n", encoding="utf-8")
    return Segment(
        ordinal=ordinal,
        commands=merged.commands,
        frame_count=merged.frame_count,
        script_path=script_path,
        output_path=output_path,
        command=encoder_command(params, job, script_path, output_path),
    )


def build_segments(job: Job, params: EncoderParameters) -> list[Segment]:
    """Plan, merge and write the segment scripts of ``job``."""
    plans = plan_segments(job.input_clips, params.effective_job_limit)
    if not plans:
        raise SegmentBuildError(f"Job {job.name!r} has no frames to encode")

    segments = []
    try:
        Path(job.output_dir).mkdir(parents=True, exist_ok=True)
        for plan in plans:
            merged = merge_slices(plan.slices, job.target_dimension)
            segment = write_segment(job, params, plan.ordinal, merged)
            log.info("Built segment %s of job %s: %s frames, script = [ %s ]",
                     segment.ordinal, job.name, segment.frame_count, segment.script_path)
            segments.append(segment)
    except OSError as e:
        raise SegmentBuildError(f"Failed to build segments due to: {e}") from e
    return segments
