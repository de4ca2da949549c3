# x264q/models/script.py
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class CommandKind(Enum):
    COMMENT = "Comment"
    LOAD_PLUGIN = "LoadPlugin"
    TRIM = "Trim"
    INDEXED_SOURCE = "IndexedSource"
    DEINTERLACE = "Deinterlace"
    SELECT_EVEN = "SelectEven"
    CROP = "Crop"
    COLOR_MATRIX = "ColorMatrix"
    UNDOT = "Undot"
    TWEAK = "Tweak"
    RESIZE = "Resize"
    GENERIC = "Generic"


@dataclass(frozen=True)
class ScriptCommand:
    kind: CommandKind
    text: str

    def arguments(self) -> list[str]:
        """Comma separated arguments between the first '(' and the first ')'."""
        start, end = self.text.find("("), self.text.find(")")
        if start == -1 or end == -1 or end < start:
            return []
        return [a.strip() for a in self.text[start + 1:end].split(",")]

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class ClipDimension:
    width: int
    height: int

    def __str__(self) -> str:
        return f"[{self.width}x{self.height}]"


@dataclass(frozen=True)
class InputClip:
    path: Path
    commands: tuple[ScriptCommand, ...]
    clip_start: int
    clip_end: int
    dimension: ClipDimension

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def uses_deinterlace(self) -> bool:
        kinds = {c.kind for c in self.commands}
        return CommandKind.DEINTERLACE in kinds and CommandKind.SELECT_EVEN not in kinds

    @property
    def frame_count(self) -> int:
        return self.clip_end - self.clip_start + 1

    @property
    def encoded_frame_count(self) -> int:
        # deinterlacing without SelectEven() doubles the frame rate
        return 2 * self.frame_count if self.uses_deinterlace else self.frame_count

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ClipSlice:
    """Inclusive frame range [start, end] of one clip assigned to a segment."""
    clip: InputClip
    start: int
    end: int

    @property
    def frame_count(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class MergedScript:
    commands: tuple[ScriptCommand, ...]
    frame_count: int


@dataclass(frozen=True)
class Segment:
    ordinal: int
    commands: tuple[ScriptCommand, ...]
    frame_count: int
    script_path: Path
    output_path: Path
    command: tuple[str, ...] = field(default=())
