import threading

import pytest

from x264q.errors import EncodeError
from x264q.models.script import Segment
from x264q.workers.segment_pool import (
    SegmentResult,
    SegmentState,
    SegmentWorkerPool,
    parse_progress_line,
    raise_for_failures,
)


def segment(tmp_path, ordinal, x264, frames=5, *extra):
    script = tmp_path / f"seg_{ordinal}.avs"
    script.write_text("return clip_0\n")
    out = tmp_path / f"seg_{ordinal}.264"
    command = (str(x264), "--frames", str(frames), *extra, "--output", str(out), str(script))
    return Segment(ordinal, (), frames, script, out, command)


@pytest.mark.parametrize("line,expected", [
    ("[ 120/500 ], 23.45 fps, 1800.22 kb/s, eta 0:00:16", (120, 23.45)),
    ("[0/10], 0 fps", (0, 0.0)),
    ("encoded 300 frames, 25.10 fps, 1234.00 kb/s", (300, 0.0)),
    ("x264 [info]: profile High, level 4.1", None),
    ("", None),
])
def test_parse_progress_line(line, expected):
    assert parse_progress_line(line) == expected


def test_state_clamps_frames_to_segment_length(tmp_path):
    state = SegmentState(segment(tmp_path, 0, "x264", frames=100))
    state.feed("[ 999/1000 ], 5.5 fps")
    assert state.progress == (100, 5.5)
    state.feed("   \n")
    assert state.output == "[ 999/1000 ], 5.5 fps"
    state.feed("x264 [warning]: something")
    assert state.progress == (100, 5.5)
    assert state.output == "x264 [warning]: something"


def test_all_segments_encoded(tmp_path, fake_x264):
    segments = [segment(tmp_path, i, fake_x264, frames=3 + i) for i in range(3)]
    pool = SegmentWorkerPool(2)

    results = pool.encode(segments)

    assert [r.ordinal for r in results] == [0, 1, 2]
    assert all(r.ok for r in results)
    assert all(s.output_path.exists() for s in segments)
    assert pool.progress()[0] == 3 + 4 + 5
    assert pool.total_frames == 12
    assert pool.outputs()[2].startswith("encoded 5 frames")
    raise_for_failures(results)


def test_fps_is_summed_across_segments(tmp_path):
    pool = SegmentWorkerPool(2)
    pool._states = [SegmentState(segment(tmp_path, i, "x264", frames=50)) for i in range(2)]
    pool._states[0].feed("[ 10/50 ], 12.0 fps")
    pool._states[1].feed("[ 20/50 ], 8.5 fps")
    assert pool.progress() == (30, 20.5)


def test_nonzero_exit_is_reported(tmp_path, fake_x264):
    segments = [segment(tmp_path, 0, fake_x264), segment(tmp_path, 1, fake_x264, 5, "--exit", "2")]
    results = SegmentWorkerPool(2).encode(segments)

    assert results[0].ok
    assert not results[1].ok
    assert results[1].exit_code == 2
    assert "2" in results[1].message
    assert not results[1].interrupted
    with pytest.raises(EncodeError) as info:
        raise_for_failures(results)
    assert info.value.exit_code == 2


def test_missing_encoder(tmp_path):
    results = SegmentWorkerPool(1).encode([segment(tmp_path, 0, tmp_path / "no-such-x264")])
    assert not results[0].ok
    assert results[0].message.startswith("Segment command creation failure")


def test_cancel_kills_running_encoders(tmp_path, fake_x264):
    segments = [segment(tmp_path, i, fake_x264, 5, "--sleep", "30") for i in range(3)]
    pool = SegmentWorkerPool(2)
    threading.Timer(0.5, pool.cancel).start()

    results = pool.encode(segments)

    assert pool.cancelled
    assert all(r.interrupted for r in results)
    assert not any(s.output_path.exists() for s in segments)


def test_empty_segment_list():
    assert SegmentWorkerPool(3).encode([]) == []


def test_result_interrupted_flag():
    assert SegmentResult(0, False, "Segment encoder was interrupted: command = x264").interrupted
    assert not SegmentResult(0, False, "Encoder completed with an error = 1", 1).interrupted
    assert not SegmentResult(0, True).interrupted
