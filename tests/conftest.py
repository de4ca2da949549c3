import os
import shlex
import stat
import sys
from pathlib import Path

import pytest

from x264q.models.job import EncoderParameters, EncoderPreset, Job
from x264q.models.script import ClipDimension
from x264q.parsers.avs_script import parse_script_lines
from x264q.parsers.index_files import IndexInfo

FAKE_X264 = """\
import argparse, sys, time
p = argparse.ArgumentParser(allow_abbrev=False)
p.add_argument("--output")
p.add_argument("--exit", type=int, default=0)
p.add_argument("--sleep", type=float, default=0)
p.add_argument("--frames", type=int, default=5)
args, rest = p.parse_known_args()
print("avs [info]: 720x480p 0:0 @ 30000/1001 fps (cfr)", flush=True)
for i in range(1, args.frames + 1):
    print(f"[ {i}/{args.frames} ], 12.50 fps, 1000.00 kb/s, eta 0:00:01", flush=True)
if args.sleep:
    time.sleep(args.sleep)
if args.output and args.exit == 0:
    with open(args.output, "w") as f:
        f.write(rest[-1] + "\\n")
print(f"encoded {args.frames} frames, 12.50 fps, 1000.00 kb/s", flush=True)
sys.exit(args.exit)
"""

FAKE_MKVMERGE = """\
import os, sys
args = sys.argv[1:]
if os.environ.get("FAKE_MKVMERGE_EXIT"):
    print("Error: cannot merge", flush=True)
    sys.exit(int(os.environ["FAKE_MKVMERGE_EXIT"]))
out = args[args.index("-o") + 1]
parts = [a for a in args[args.index("-o") + 2:] if a != "+"]
with open(out, "w") as f:
    for part in parts:
        with open(part) as src:
            f.write(src.read())
for i in range(200):
    print(f"Progress: {i}%", flush=True)
"""


def _executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_x264(tmp_path) -> Path:
    return _executable(tmp_path / "fake_x264", FAKE_X264)


@pytest.fixture
def fake_mkvmerge(tmp_path) -> Path:
    return _executable(tmp_path / "fake_mkvmerge", FAKE_MKVMERGE)


@pytest.fixture
def params(fake_x264, fake_mkvmerge) -> EncoderParameters:
    return EncoderParameters(str(fake_x264), str(fake_mkvmerge), job_limit=2)


def preset(**flags) -> EncoderPreset:
    command = " ".join(f"--{k} {shlex.quote(str(v))}" for k, v in flags.items())
    return EncoderPreset("test", command)


def index_reader(width=720, height=480, frames=-1):
    calls = []

    def read(path):
        calls.append(path)
        return IndexInfo(width, height, frames)

    read.calls = calls
    return read


def avs_lines(start=0, end=99, deinterlace=False, select_even=False, crop="crop(0, 0, 0, 0)",
              resize=None, plugin='LoadPlugin("C:\\DGDecodeNV.dll")', source='DGSource("movie.dgi")'):
    lines = [plugin, source, crop, f"Trim({start},{end})"]
    if deinterlace:
        lines.append('QTGMC(Preset="Slower")')
    if select_even:
        lines.append("SelectEven()")
    if resize:
        lines.append(resize)
    return lines


def make_clip(frames=100, start=0, width=720, height=480, name="clip.avs", **kw):
    lines = avs_lines(start=start, end=start + frames - 1, **kw)
    return parse_script_lines(lines, Path("/scripts") / name, read_index=index_reader(width, height))


def make_job(tmp_path, name="job", clips=None, target=None, **options) -> Job:
    clips = clips if clips is not None else [make_clip()]
    return Job(name=name, input_clips=clips,
               target_dimension=target or clips[0].dimension,
               output_dir=tmp_path / "out", **options)


@pytest.fixture(autouse=True)
def _no_cpu_surprises(monkeypatch):
    monkeypatch.setattr(os, "cpu_count", lambda: 4)
