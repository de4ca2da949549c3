# x264q/cli.py
import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QObject, QTimer, Slot

from .errors import ParseError
from .models.job import Job, JobStatus
from .models.script import ClipDimension
from .parsers.avs_script import create_job
from .utils.paths import default_job_name, safe_name
from .utils.settings import active_preset, encoder_parameters, load_settings
from .workers.scheduler import JobScheduler
from .workers.signals import QtProgressBridge

log = logging.getLogger("x264q")


def format_seconds(seconds: float) -> str:
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="x264q",
        description="Encode AviSynth scripts with several x264 processes in parallel and merge the result.",
    )
    p.add_argument("name", nargs="?", help="job name (output is <output-dir>/<name>.mkv)")
    p.add_argument("scripts", nargs="*", type=Path, help="input .avs scripts, in playback order")
    p.add_argument("--job-file", type=Path, help="JSON list of jobs to queue")
    p.add_argument("-o", "--output-dir", type=Path, help="where segments and the merged file go")
    p.add_argument("--width", type=int, help="target width (default: first clip)")
    p.add_argument("--height", type=int, help="target height (default: first clip)")
    p.add_argument("--sar", help="sample aspect ratio passed to x264, e.g. 16:15")
    p.add_argument("-j", "--jobs", type=int, help="parallel encoders, 0 = one per CPU")
    p.add_argument("--preset", help="encoder preset name from the settings file")
    p.add_argument("--no-cleanup", action="store_true", help="keep segment scripts and .264 files")
    p.add_argument("--x264", help="x264 executable")
    p.add_argument("--mkvmerge", help="mkvmerge executable")
    p.add_argument("--settings", type=Path, help="settings JSON file")
    p.add_argument("--log-file", type=Path, help="also write the log to this file")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def _setup_logging(verbose: bool, log_file: Path | None) -> None:
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=fmt,
                        handlers=handlers, force=True)


def _dimension(width: int | None, height: int | None) -> ClipDimension | None:
    if width is None and height is None:
        return None
    if width is None or height is None:
        raise ValueError("width and height go together")
    return ClipDimension(int(width), int(height))


def load_job_file(path: Path) -> list[dict]:
    try:
        entries = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ParseError(f"Cannot read job file {path}: {e}") from e
    except ValueError as e:
        raise ParseError(f"Malformed job file {path}: {e}") from e
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise ParseError(f"Malformed job file {path}: expected a list of job objects")
    return entries


def job_specs(args, settings: dict) -> list[dict]:
    """Job descriptions from --job-file or from the positional arguments."""
    defaults = {
        "output_dir": str(args.output_dir or settings["output_root"]),
        "sar": args.sar or settings["sar"],
        "preset": args.preset,
        "cleanup": False if args.no_cleanup else bool(settings["perform_cleanup"]),
        "width": args.width,
        "height": args.height,
    }
    if args.job_file:
        return [{**defaults, **entry} for entry in load_job_file(args.job_file)]
    scripts = list(args.scripts)
    if args.name and args.name.lower().endswith(".avs"):
        # no job name given, the first positional is a script too
        scripts.insert(0, Path(args.name))
        args.name = None
    if not scripts:
        raise SystemExit("nothing to encode: give a job name and .avs scripts, or --job-file")
    return [{**defaults, "name": args.name or default_job_name(scripts[0]),
             "inputs": [str(s) for s in scripts]}]


def build_jobs(specs: list[dict], settings: dict) -> tuple[list[Job], list[str]]:
    jobs, errors = [], []
    for i, spec in enumerate(specs, 1):
        label = spec.get("name") or f"job #{i}"
        try:
            name = safe_name(spec["name"])
            job = create_job(
                name, spec["inputs"], spec["output_dir"],
                target_dimension=_dimension(spec.get("width"), spec.get("height")),
                output_sar=spec["sar"],
                preset=active_preset(settings, spec.get("preset")),
                cleanup=spec["cleanup"],
            )
        except KeyError as e:
            errors.append(f"{label}: missing or unknown {e}")
            continue
        except (ParseError, ValueError, TypeError) as e:
            errors.append(f"{label}: {e}")
            continue
        jobs.append(job)
    return jobs, errors


class ConsoleReporter(QObject):
    def __init__(self, stream=None):
        super().__init__()
        self.stream = stream or sys.stdout

    @Slot(object, object)
    def on_progress(self, job, snap):
        self.stream.write(
            f"\r{job.name}: {snap.frames_done_current_job}/{snap.total_frames_current_job} frames"
            f" ({snap.current_job_fraction:.1%}) {snap.fps:.2f} fps"
            f" | total {snap.total_fraction:.1%}, jobs {snap.jobs_done}/{snap.jobs_total}"
        )
        self.stream.flush()

    @Slot(object)
    def on_job_done(self, job):
        took = ""
        if job.time_started and job.time_completed:
            took = f" in {format_seconds(job.time_completed - job.time_started)}"
        self.stream.write(f"\n{job.name}: {job.status}{took}{' - ' + job.message if job.message else ''}\n")
        self.stream.flush()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose, args.log_file)

    settings = load_settings(args.settings)
    if args.x264:
        settings["x264_path"] = args.x264
    if args.mkvmerge:
        settings["mkvmerge_path"] = args.mkvmerge
    if args.jobs is not None:
        settings["encoder_job_limit"] = args.jobs
    params = encoder_parameters(settings)

    try:
        jobs, errors = build_jobs(job_specs(args, settings), settings)
    except ParseError as e:
        jobs, errors = [], [str(e)]
    for e in errors:
        log.error("Skipping job %s", e)
    if not jobs:
        return 1

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    scheduler = JobScheduler(params)
    bridge = QtProgressBridge()
    reporter = ConsoleReporter()
    bridge.progress.connect(reporter.on_progress)
    bridge.job_done.connect(reporter.on_job_done)
    bridge.all_done.connect(app.quit)
    scheduler.add_listener(bridge)

    previous = signal.signal(signal.SIGINT, lambda *_: scheduler.cancel_all())
    # give the interpreter a chance to run the SIGINT handler while Qt spins
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(250)

    for job in jobs:
        scheduler.add(job)
    try:
        QTimer.singleShot(0, lambda: scheduler.encode(params))
        app.exec()
        scheduler.wait()
    finally:
        wakeup.stop()
        signal.signal(signal.SIGINT, previous)
        scheduler.remove_listener(bridge)

    failed = errors or any(j.status is not JobStatus.FINISHED for j in jobs)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
