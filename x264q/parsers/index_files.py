# x264q/parsers/index_files.py
import math
from pathlib import Path
from typing import NamedTuple

from ..errors import ParseError

D2V_FILE_EXTENSION = ".d2v"
DGI_FILE_EXTENSION = ".dgi"

_D2V_FIELD_OPERATION = "Field_Operation="
_D2V_PICTURE_SIZE = "Picture_Size="
_DGI_SIZE = "SIZ"


class IndexInfo(NamedTuple):
    width: int
    height: int
    frame_count: int  # -1 => unknown, the script has to trim explicitly


def _d2v_field_count(tokens: list[str]) -> int:
    fields = 0
    for flag in tokens[4:]:
        if len(flag) < 2:
            continue
        if "0" in flag or "2" in flag:
            fields += 2
        elif "1" in flag or "3" in flag:
            fields += 3
    return fields


def parse_d2v(lines) -> IndexInfo:
    width, height = -1, -1
    field_operation = -1
    field_count = 0
    in_frame_flags = False

    for line in lines:
        line = line.rstrip("\r\n")
        if line.startswith(_D2V_PICTURE_SIZE):
            w, _, h = line[len(_D2V_PICTURE_SIZE):].partition("x")
            width, height = int(w), int(h)
        elif line.startswith(_D2V_FIELD_OPERATION):
            field_operation = int(line[len(_D2V_FIELD_OPERATION):])
        elif not line.strip():
            # frame flags start at the first blank line after the header
            if field_operation != -1:
                in_frame_flags = True
        elif in_frame_flags:
            tokens = line.split(" ")
            if len(tokens) > 4:
                field_count += _d2v_field_count(tokens)

    frame_count = math.ceil(field_count / 2.0)
    if field_operation == 1:
        # empirical correction for "ignore pulldown" indexes
        frame_count = int(frame_count * 0.8)
    return IndexInfo(width, height, frame_count - 2)


def parse_dgi(lines) -> IndexInfo:
    width, height = -1, -1
    for line in lines:
        if line.startswith(_DGI_SIZE) and "x" in line:
            numbers = [int(t) for t in line.split() if t.isdigit()]
            if len(numbers) >= 2:
                width, height = numbers[0], numbers[1]
    return IndexInfo(width, height, -1)


_READERS = {
    D2V_FILE_EXTENSION: parse_d2v,
    DGI_FILE_EXTENSION: parse_dgi,
}


def read_index_info(path: str | Path) -> IndexInfo:
    """Width, height and estimated frame count of a DGIndex/DGIndexNV file."""
    path = Path(path)
    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise ParseError(f"Unsupported index file: {path}")
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return reader(f)
    except OSError as e:
        raise ParseError(f"Cannot read index file {path}: {e}") from e
    except ValueError as e:
        raise ParseError(f"Malformed index file {path}: {e}") from e
