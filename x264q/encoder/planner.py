# x264q/encoder/planner.py
import math
from dataclasses import dataclass
from typing import Sequence

from ..models.script import ClipSlice, InputClip


@dataclass(frozen=True)
class PlannedSegment:
    ordinal: int
    slices: tuple[ClipSlice, ...]

    @property
    def frame_count(self) -> int:
        return sum(s.frame_count for s in self.slices)


def segment_length(total_frames: int, segment_count: int) -> int:
    return math.ceil(total_frames / segment_count)


def plan_segments(clips: Sequence[InputClip], segment_count: int) -> list[PlannedSegment]:
    """
    Divide the combined frame range of ``clips`` into at most ``segment_count``
    frame-accurate segments of ceil(total / segment_count) frames each.

    A segment can span several clips and a clip can be split between two
    segments. The last segment absorbs the rounding shortfall.
    """
    if segment_count < 1:
        raise ValueError(f"segment_count must be positive, got {segment_count}")

    total = sum(c.frame_count for c in clips)
    if total <= 0:
        return []
    length = segment_length(total, segment_count)

    segments: list[PlannedSegment] = []
    pending: list[ClipSlice] = []

    def close_segment():
        segments.append(PlannedSegment(len(segments), tuple(pending)))
        pending.clear()

    clip_index = 0
    clip_offset = 0   # frames of the current clip already used
    seg_offset = 0    # frames already in the open segment
    frame = 0         # frames planned so far

    while frame < total:
        clip = clips[clip_index]
        clip_pos = clip.clip_start + clip_offset
        clip_left = clip.clip_end - clip_pos + 1
        seg_left = length - seg_offset

        if seg_left >= clip_left and frame + clip_left >= total:
            # last segment
            pending.append(ClipSlice(clip, clip_pos, clip_pos + (total - frame) - 1))
            close_segment()
            break

        if clip_left >= seg_left:
            # the rest of this clip fills the segment, cut it precisely
            pending.append(ClipSlice(clip, clip_pos, clip_pos + seg_left - 1))
            close_segment()
            frame += seg_left
            if seg_left == clip_left:
                clip_index += 1
                clip_offset = 0
            else:
                clip_offset += seg_left
            seg_offset = 0
        else:
            # clip too short, take all of it and keep the segment open
            pending.append(ClipSlice(clip, clip_pos, clip.clip_end))
            seg_offset += clip_left
            frame += clip_left
            clip_index += 1
            clip_offset = 0

    return segments
