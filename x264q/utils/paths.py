import re
from pathlib import Path

SEGMENT_NAME_MARKER = "_seg_"


def safe_name(s: str) -> str:
    s = re.sub(r'[\\/:*?"<>|]+', " ", s).strip()
    s = re.sub(r"\s+", " ", s)
    return s or "Unnamed"


def segment_file(out_dir: Path, job_name: str, ordinal: int, ext: str) -> Path:
    """<out_dir>/<job_name>_seg_<ordinal><ext>"""
    return Path(out_dir) / f"{job_name}{SEGMENT_NAME_MARKER}{ordinal}{ext}"


def default_job_name(script_path: Path) -> str:
    # "Movie.part1.avs" -> "Movie.part1"
    return safe_name(Path(script_path).stem)


def delete_quietly(path: Path) -> bool:
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
