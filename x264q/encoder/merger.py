# x264q/encoder/merger.py
import re
from typing import Sequence

from ..models.script import ClipDimension, ClipSlice, CommandKind, MergedScript, ScriptCommand

RESIZE_FILTER = "Spline36Resize"
CLIP_NAME_PREFIX = "clip_"

_VERBATIM = {CommandKind.COMMENT, CommandKind.GENERIC, CommandKind.LOAD_PLUGIN, CommandKind.RESIZE}
_UNQUALIFIED_SIZE = re.compile(r"(?<![\w.])(width|height)\b")


def clip_name(index: int) -> str:
    return f"{CLIP_NAME_PREFIX}{index}"


def _resize(name: str, width, height) -> ScriptCommand:
    return ScriptCommand(CommandKind.RESIZE, f"{name}={name}.{RESIZE_FILTER}({width},{height})")


def _with_trim(commands: list[ScriptCommand], start: int, end: int) -> list[ScriptCommand]:
    trimmed = ScriptCommand(CommandKind.TRIM, f"Trim({start},{end})")
    index = next(i for i, c in enumerate(commands) if c.kind is CommandKind.TRIM)
    return commands[:index] + [trimmed] + commands[index + 1:]


def _qualify_resize(command: ScriptCommand, name: str) -> ScriptCommand:
    text = _UNQUALIFIED_SIZE.sub(rf"{name}.\1", command.text)
    return ScriptCommand(CommandKind.RESIZE, f"{name}={name}.{text}")


def _insert_resizing(commands: list[ScriptCommand], name: str, target: ClipDimension,
                     deinterlaced: bool) -> list[ScriptCommand]:
    if not deinterlaced:
        return commands + [_resize(name, target.width, target.height)]
    # shrink width before the deinterlacer and height after it, the filter
    # then works on as few pixels as possible
    index = next(i for i, c in enumerate(commands) if c.kind is CommandKind.DEINTERLACE)
    return (commands[:index]
            + [_resize(name, target.width, f"{name}.height"), commands[index],
               _resize(name, f"{name}.width", target.height)]
            + commands[index + 1:])


def rename_command(command: ScriptCommand, name: str) -> ScriptCommand:
    """Bind a filter line to the clip variable ``name``."""
    kind, text = command.kind, command.text
    if kind in _VERBATIM:
        return command
    if kind is CommandKind.INDEXED_SOURCE:
        return ScriptCommand(kind, f"{name}={text}")
    if kind is CommandKind.DEINTERLACE:
        paren = text.index("(") + 1
        arg = name if text[paren:].lstrip().startswith(")") else f"{name},"
        return ScriptCommand(kind, f"{name}={text[:paren]}{arg}{text[paren:]}")
    return ScriptCommand(kind, f"{name}={name}.{text}")


def slice_commands(piece: ClipSlice, name: str, target: ClipDimension) -> list[ScriptCommand]:
    clip = piece.clip
    commands = _with_trim(list(clip.commands), piece.start, piece.end)
    explicit = [c for c in commands if c.kind is CommandKind.RESIZE]
    if explicit:
        commands = [_qualify_resize(c, name) if c.kind is CommandKind.RESIZE else c
                    for c in commands]
    elif clip.dimension != target:
        commands = _insert_resizing(commands, name, target, clip.uses_deinterlace)
    return [rename_command(c, name) for c in commands]


def merge_slices(slices: Sequence[ClipSlice], target: ClipDimension) -> MergedScript:
    """
    Merge the clip slices of one segment into a single script.

    Each slice gets its own clip variable (clip_0, clip_1, ...), LoadPlugin()
    lines are hoisted to the top once, and the script returns the slices
    spliced together in order.
    """
    plugins: list[ScriptCommand] = []
    body: list[ScriptCommand] = []
    names: list[str] = []
    frame_count = 0

    for i, piece in enumerate(slices):
        name = clip_name(i)
        names.append(name)
        for command in slice_commands(piece, name, target):
            if command.kind is CommandKind.LOAD_PLUGIN:
                if command not in plugins:
                    plugins.append(command)
            else:
                body.append(command)
        frame_count += 2 * piece.frame_count if piece.clip.uses_deinterlace else piece.frame_count

    body.append(ScriptCommand(CommandKind.GENERIC, "return " + " ++ ".join(names)))
    return MergedScript(tuple(plugins + body), frame_count)
