# x264q/parsers/avs_script.py
import logging
from pathlib import Path
from typing import Callable, Iterable

from ..errors import ParseError
from ..models.job import Job
from ..models.script import ClipDimension, CommandKind, InputClip, ScriptCommand
from .index_files import D2V_FILE_EXTENSION, DGI_FILE_EXTENSION, IndexInfo, read_index_info

log = logging.getLogger(__name__)

COMMENT = "#"
MEGUI_DIRECTIVE = "MeGUI"
DGSOURCE_CALL = 'DGSource("'
DGDECODE_CALL = 'DGDecode_mpeg2source("'

# first match wins
COMMAND_MARKERS: list[tuple[str, CommandKind]] = [
    ("LoadPlugin(", CommandKind.LOAD_PLUGIN),
    ("Trim(", CommandKind.TRIM),
    ("QTGMC(", CommandKind.DEINTERLACE),
    ("SelectEven(", CommandKind.SELECT_EVEN),
    ("crop(", CommandKind.CROP),
    ("ColorMatrix(", CommandKind.COLOR_MATRIX),
    ("Undot(", CommandKind.UNDOT),
    ("Tweak(", CommandKind.TWEAK),
    ("Spline36Resize(", CommandKind.RESIZE),
]

INDEXED_SOURCES = [
    (DGSOURCE_CALL, DGI_FILE_EXTENSION),
    (DGDECODE_CALL, D2V_FILE_EXTENSION),
]

IndexReader = Callable[[str], IndexInfo]


def classify_line(line: str) -> CommandKind | None:
    """Kind of a recognized filter line, GENERIC for anything else, None for lines to drop."""
    if not line.strip() or MEGUI_DIRECTIVE in line:
        return None
    if line.startswith(COMMENT):
        return CommandKind.COMMENT
    for marker, kind in COMMAND_MARKERS:
        if marker in line:
            return kind
    return CommandKind.GENERIC


def indexed_source_path(line: str) -> str | None:
    for call, ext in INDEXED_SOURCES:
        if call in line and ext in line:
            return line[line.index(call) + len(call):line.rindex('"')]
    return None


def _int_args(command: ScriptCommand, count: int, what: str) -> list[int]:
    args = command.arguments()
    try:
        return [int(a) for a in args[:count]] if len(args) >= count else []
    except ValueError:
        raise ParseError(f"Unsupported {what} arguments: {command.text}") from None


def _trim_insert_index(commands: list[ScriptCommand]) -> int:
    setup = [i for i, c in enumerate(commands)
             if c.kind in (CommandKind.INDEXED_SOURCE, CommandKind.COLOR_MATRIX)]
    later = [i for i, c in enumerate(commands)
             if c.kind in (CommandKind.DEINTERLACE, CommandKind.TRIM)]
    lower = max(setup) + 1 if setup else 0
    return max(lower, min(later)) if later else lower


def parse_script_lines(lines: Iterable[str], path: str | Path,
                       read_index: IndexReader = read_index_info) -> InputClip:
    path = Path(path)
    commands: list[ScriptCommand] = []
    index_info: IndexInfo | None = None

    for raw in lines:
        line = raw.strip()
        kind = classify_line(line)
        if kind is None:
            continue
        if kind is CommandKind.GENERIC and (index_path := indexed_source_path(line)):
            if not Path(index_path).is_absolute():
                index_path = str(path.parent / index_path)
            index_info = read_index(index_path)
            commands.append(ScriptCommand(CommandKind.INDEXED_SOURCE, line))
            continue
        commands.append(ScriptCommand(kind, line))

    estimated = index_info.frame_count if index_info else -1
    log.info("Estimated frame count: %s for AVS = [ %s ]", estimated, path)

    if not any(c.kind is CommandKind.TRIM for c in commands):
        if estimated < 0:
            raise ParseError(f"{path.name}: cannot determine clip dimensions")
        # no explicit Trim(), assume the whole indexed file gets encoded
        commands.insert(_trim_insert_index(commands),
                        ScriptCommand(CommandKind.TRIM, f"Trim(0,{estimated})"))

    if index_info is None:
        raise ParseError(f"{path.name}: no indexed source (DGSource/DGDecode_mpeg2source) found")

    trim = next(c for c in commands if c.kind is CommandKind.TRIM)
    bounds = _int_args(trim, 2, "Trim()")
    if not bounds:
        raise ParseError(f"{path.name}: Trim() needs start and end frames: {trim.text}")
    clip_start, clip_end = bounds
    if clip_end < clip_start:
        raise ParseError(f"{path.name}: Trim() ends before it starts: {trim.text}")

    crop = next((c for c in commands if c.kind is CommandKind.CROP), None)
    if crop is None:
        raise ParseError(f"{path.name}: cannot determine clip dimensions (no crop() found)")
    margins = _int_args(crop, 4, "crop()")
    if not margins:
        raise ParseError(f"{path.name}: crop() needs four margins: {crop.text}")
    left, top, right, bottom = (abs(m) for m in margins)
    dimension = ClipDimension(index_info.width - (left + right),
                              index_info.height - (top + bottom))

    return InputClip(path=path, commands=tuple(commands), clip_start=clip_start,
                     clip_end=clip_end, dimension=dimension)


def parse_script(path: str | Path, read_index: IndexReader = read_index_info) -> InputClip:
    path = Path(path)
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        raise ParseError(f"Cannot read script {path}: {e}") from e
    return parse_script_lines(lines, path, read_index)


def parse_scripts(paths: Iterable[str | Path],
                  read_index: IndexReader = read_index_info) -> list[InputClip]:
    return [parse_script(p, read_index) for p in paths]


def create_job(name: str, script_paths: Iterable[str | Path], output_dir: str | Path,
               target_dimension: ClipDimension | None = None, read_index: IndexReader = read_index_info,
               **options) -> Job:
    """Parse ``script_paths`` into a queued job. ``options`` go straight to ``Job``."""
    clips = parse_scripts(script_paths, read_index)
    if not clips:
        raise ParseError(f"Job {name!r} has no input scripts")
    return Job(name=name, input_clips=clips,
               target_dimension=target_dimension or clips[0].dimension,
               output_dir=Path(output_dir), **options)
