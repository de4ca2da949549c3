from pathlib import Path

import pytest

from conftest import avs_lines, index_reader, make_clip
from x264q.errors import ParseError
from x264q.models.script import ClipDimension, CommandKind
from x264q.parsers.avs_script import classify_line, create_job, parse_script, parse_script_lines


@pytest.mark.parametrize("line,kind", [
    ("# a comment with Trim(0,10)", CommandKind.COMMENT),
    ('LoadPlugin("C:\\DGDecode.dll")', CommandKind.LOAD_PLUGIN),
    ("Trim(0,1000)", CommandKind.TRIM),
    ('QTGMC(Preset="Slower")', CommandKind.DEINTERLACE),
    ("SelectEven()", CommandKind.SELECT_EVEN),
    ("crop(8, 0, -8, 0)", CommandKind.CROP),
    ('ColorMatrix(mode="Rec.601->Rec.709")', CommandKind.COLOR_MATRIX),
    ("Undot()", CommandKind.UNDOT),
    ("Tweak(sat=1.1)", CommandKind.TWEAK),
    ("Spline36Resize(1280,720)", CommandKind.RESIZE),
    ("AssumeTFF()", CommandKind.GENERIC),
    ("", None),
    ("   ", None),
    ("#MeGUI_resize", None),
])
def test_classify_line(line, kind):
    assert classify_line(line) is kind


def test_indexed_source_goes_to_index_reader():
    read = index_reader(720, 480, 1000)
    clip = parse_script_lines(['DGDecode_mpeg2source("D:\\rips\\ep1.d2v")', "crop(0,0,0,0)"],
                              "/scripts/ep1.avs", read_index=read)

    assert len(read.calls) == 1
    assert read.calls[0].endswith("ep1.d2v")
    assert clip.commands[0].kind is CommandKind.INDEXED_SOURCE
    assert clip.commands[0].text == 'DGDecode_mpeg2source("D:\\rips\\ep1.d2v")'


def test_relative_index_path_resolves_next_to_script():
    read = index_reader(720, 480, 10)
    parse_script_lines(['DGDecode_mpeg2source("ep1.d2v")', "crop(0,0,0,0)"],
                       "/scripts/ep1.avs", read_index=read)
    assert Path(read.calls[0]) == Path("/scripts/ep1.d2v")


def test_missing_trim_is_synthesized_before_deinterlace():
    lines = [
        'LoadPlugin("DGDecode.dll")',
        'DGDecode_mpeg2source("ep1.d2v")',
        'ColorMatrix(mode="Rec.601->Rec.709")',
        "crop(8, 0, -8, 0)",
        'QTGMC(Preset="Slower")',
    ]
    clip = parse_script_lines(lines, "/s/ep1.avs", read_index=index_reader(720, 480, 1000))

    texts = [c.text for c in clip.commands]
    assert texts == [
        'LoadPlugin("DGDecode.dll")',
        'DGDecode_mpeg2source("ep1.d2v")',
        'ColorMatrix(mode="Rec.601->Rec.709")',
        "crop(8, 0, -8, 0)",
        "Trim(0,1000)",
        'QTGMC(Preset="Slower")',
    ]
    assert (clip.clip_start, clip.clip_end) == (0, 1000)
    assert clip.frame_count == 1001


def test_missing_trim_without_deinterlace_goes_after_source():
    lines = ['DGDecode_mpeg2source("ep1.d2v")', "crop(0,0,0,0)", "Undot()"]
    clip = parse_script_lines(lines, "/s/ep1.avs", read_index=index_reader(720, 480, 50))
    assert [c.kind for c in clip.commands] == [
        CommandKind.INDEXED_SOURCE, CommandKind.TRIM, CommandKind.CROP, CommandKind.UNDOT]


def test_unknown_frame_count_without_trim_fails():
    with pytest.raises(ParseError, match="cannot determine clip dimensions"):
        parse_script_lines(['DGSource("a.dgi")', "crop(0,0,0,0)"], "/s/a.avs",
                           read_index=index_reader(1920, 1080, -1))


def test_unknown_frame_count_with_explicit_trim_is_fine():
    clip = parse_script_lines(['DGSource("a.dgi")', "crop(0,0,0,0)", "Trim(100,199)"], "/s/a.avs",
                              read_index=index_reader(1920, 1080, -1))
    assert clip.frame_count == 100
    assert clip.clip_start == 100


def test_dimension_subtracts_absolute_crop_margins():
    clip = make_clip(crop="crop(8, 2, -8, -2)", width=720, height=480)
    assert clip.dimension == ClipDimension(704, 476)


def test_no_crop_fails():
    with pytest.raises(ParseError, match="crop"):
        parse_script_lines(['DGSource("a.dgi")', "Trim(0,10)"], "/s/a.avs",
                           read_index=index_reader())


def test_no_indexed_source_fails():
    with pytest.raises(ParseError, match="indexed source"):
        parse_script_lines(['AviSource("a.avi")', "crop(0,0,0,0)", "Trim(0,10)"], "/s/a.avs",
                           read_index=index_reader())


def test_bad_trim_arguments_fail():
    with pytest.raises(ParseError):
        parse_script_lines(['DGSource("a.dgi")', "crop(0,0,0,0)", "Trim(start,10)"], "/s/a.avs",
                           read_index=index_reader())
    with pytest.raises(ParseError, match="ends before"):
        parse_script_lines(['DGSource("a.dgi")', "crop(0,0,0,0)", "Trim(10,5)"], "/s/a.avs",
                           read_index=index_reader())


def test_deinterlace_flag():
    assert make_clip(deinterlace=True).uses_deinterlace
    assert not make_clip(deinterlace=True, select_even=True).uses_deinterlace
    assert not make_clip().uses_deinterlace
    assert make_clip(frames=10, deinterlace=True).encoded_frame_count == 20


def test_comments_kept_and_megui_directives_dropped():
    lines = avs_lines() + ["# final tweaks", "#MeGUI_crop", "", "AssumeFPS(24000,1001)"]
    clip = parse_script_lines(lines, "/s/a.avs", read_index=index_reader())
    kinds = [c.kind for c in clip.commands]
    assert kinds[-2:] == [CommandKind.COMMENT, CommandKind.GENERIC]
    assert not any("MeGUI" in c.text for c in clip.commands)


def test_parse_script_and_create_job(tmp_path):
    script = tmp_path / "ep1.avs"
    script.write_text("\n".join(avs_lines(start=0, end=249)) + "\n")
    read = index_reader(720, 480)

    clip = parse_script(script, read_index=read)
    assert clip.path == script
    assert clip.frame_count == 250

    job = create_job("ep1", [script, script], tmp_path / "out", read_index=read, output_sar="10:11")
    assert job.target_dimension == clip.dimension
    assert job.frame_count == 500
    assert job.output_sar == "10:11"


def test_parse_script_missing_file(tmp_path):
    with pytest.raises(ParseError, match="Cannot read script"):
        parse_script(tmp_path / "nope.avs", read_index=index_reader())
