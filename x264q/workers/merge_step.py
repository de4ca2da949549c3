# x264q/workers/merge_step.py
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Sequence

from ..errors import MergeError
from ..models.job import Job
from ..models.script import Segment
from ..utils.paths import delete_quietly

log = logging.getLogger(__name__)

SEGMENT_SEPARATOR = "+"


def merge_command(mkvmerge_path: str, output_path: Path, segment_outputs: Sequence[Path]) -> list[str]:
    cmd = [mkvmerge_path, "-o", str(output_path)]
    for i, p in enumerate(segment_outputs):
        if i:
            cmd.append(SEGMENT_SEPARATOR)
        cmd.append(str(p))
    return cmd


def cleanup_segments(segments: Sequence[Segment]) -> int:
    removed = 0
    for segment in segments:
        for p in (segment.script_path, segment.output_path):
            try:
                removed += delete_quietly(p)
            except OSError as e:
                log.warning("Could not delete %s: %s", p, e)
    return removed


def merge_segments(job: Job, segments: Sequence[Segment], mkvmerge_path: str) -> Path:
    """Join the encoded segments of ``job`` into ``<output_dir>/<name>.mkv``."""
    ordered = sorted(segments, key=lambda s: s.ordinal)
    output_path = job.output_path
    cmd = merge_command(mkvmerge_path, output_path, [s.output_path for s in ordered])
    log.info("Merging segments: Job = %s, command = [ %s ]", job.name,
             " ".join(shlex.quote(c) for c in cmd))
    try:
        with subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        ) as proc:
            last = ""
            # keep draining so the merger never stalls on a full pipe
            for line in proc.stdout:
                if line := line.strip():
                    last = line
                    log.debug("%s: %s", job.name, line)
            rc = proc.wait()
    except OSError as e:
        raise MergeError(f"Failed to merge files: {e}") from e
    finally:
        if job.cleanup:
            cleanup_segments(ordered)

    if rc != 0:
        message = f"Merger completed with an error = {rc}"
        raise MergeError(f"{message} ({last})" if last else message)
    log.info("Segments were merged: Job = %s, output = [ %s ]", job.name, output_path)
    return output_path
