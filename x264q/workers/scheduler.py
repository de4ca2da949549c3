# x264q/workers/scheduler.py
import logging
import queue
import threading
import time
from typing import Callable, Iterable

from ..encoder.builder import build_segments
from ..errors import X264qError
from ..models.job import EncoderParameters, Job, JobStatus, ProgressSnapshot
from .merge_step import merge_segments
from .segment_pool import SegmentWorkerPool, raise_for_failures

log = logging.getLogger(__name__)

PROGRESS_PERIOD = 1.0


class JobPipeline(threading.Thread):
    """Encodes the segments of one job in parallel, then merges them."""

    def __init__(self, job: Job, params: EncoderParameters,
                 on_done: Callable[[Job, JobStatus, str], None],
                 merge=merge_segments):
        super().__init__(name=f"x264q-job-{job.name}", daemon=True)
        self.job = job
        self.params = params
        self.pool = SegmentWorkerPool(params.effective_job_limit)
        self._on_done = on_done
        self._merge = merge

    def cancel(self) -> None:
        self.pool.cancel()

    def run(self) -> None:
        job = self.job
        log.info("Start encoding: Job = %s", job.name)
        try:
            results = self.pool.encode(job.segments)
            if self.pool.cancelled:
                status, message = JobStatus.CANCELLED, ""
            else:
                raise_for_failures(results)
                log.info("All segments encoded: Job = %s", job.name)
                self._merge(job, job.segments, self.params.mkvmerge_path)
                status, message = JobStatus.FINISHED, "Completed"
        except X264qError as e:
            status, message = JobStatus.FAILED, str(e)
        except Exception as e:
            log.exception("Unexpected failure in job %s", job.name)
            status, message = JobStatus.FAILED, f"{type(e).__name__}: {e}"
        self._on_done(job, status, message)


class JobScheduler:
    """
    FIFO queue of encoder jobs with at most one job running.

    ``encode()`` starts a background loop that takes the oldest queued job,
    builds its segments, hands them to a ``JobPipeline`` thread and waits on
    a completion channel before moving on to the next job.
    """

    def __init__(self, params: EncoderParameters | None = None,
                 progress_period: float = PROGRESS_PERIOD,
                 build=build_segments, merge=merge_segments):
        self.params = params or EncoderParameters()
        self.progress_period = progress_period
        self._build = build
        self._merge = merge
        self._lock = threading.Lock()
        self._jobs: list[Job] = []
        self._listeners: list = []
        self._loop: threading.Thread | None = None
        self._thread: threading.Thread | None = None
        self._completions: queue.Queue[Job] = queue.Queue()
        self._active: Job | None = None
        self._pipeline: JobPipeline | None = None
        self._cancel_active = False
        self._stop = False

    # listeners

    def add_listener(self, listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str, *args) -> None:
        for listener in list(self._listeners):
            handler = getattr(listener, event, None)
            if handler is None:
                continue
            try:
                handler(*args)
            except Exception:
                log.exception("Listener %r failed on %s", listener, event)

    # queue

    def add(self, job: Job) -> None:
        if job.status is not JobStatus.QUEUED:
            raise ValueError(f"Job {job.name!r} is {job.status}, only queued jobs can be added")
        with self._lock:
            self._jobs.append(job)

    def remove(self, jobs: Iterable[Job]) -> bool:
        jobs = list(jobs)
        with self._lock:
            self._jobs = [j for j in self._jobs if j not in jobs]
            running = self._active is not None and self._active in jobs
            empty = not self._jobs
        if running:
            self.cancel()
        return empty

    def jobs(self) -> list[Job]:
        with self._lock:
            return list(self._jobs)

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._loop is not None

    @property
    def active_job(self) -> Job | None:
        return self._active

    # control

    def encode(self, params: EncoderParameters | None = None) -> bool:
        """Start processing the queue. Returns False if it is already being processed."""
        with self._lock:
            if self._loop is not None:
                return False
            if params is not None:
                self.params = params
            self._stop = False
            self._loop = threading.Thread(target=self._run_loop, args=(self.params,),
                                          name="x264q-scheduler", daemon=True)
            self._thread = self._loop
            self._loop.start()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the scheduler loop is done. True if it was."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def cancel(self) -> None:
        """Cancel the running job only, queued jobs are still processed."""
        with self._lock:
            if self._pipeline is not None:
                self._pipeline.cancel()
            elif self._active is not None:
                self._cancel_active = True

    def cancel_all(self) -> None:
        """Cancel the running job and every queued one, then stop."""
        cancelled = []
        with self._lock:
            if self._loop is not None:
                self._stop = True
            for job in self._jobs:
                if job.status is JobStatus.QUEUED:
                    job.transition(JobStatus.CANCELLED, "")
                    job.time_completed = time.time()
                    cancelled.append(job)
        self.cancel()
        for job in cancelled:
            self._notify("on_job_completed", job)

    # progress

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            jobs = list(self._jobs)
            active, pipeline = self._active, self._pipeline
        current_done, fps = pipeline.pool.progress() if pipeline is not None else (0, 0.0)
        finished = sum(j.frame_count for j in jobs if j.status is JobStatus.FINISHED)
        return ProgressSnapshot(
            frames_done_current_job=current_done,
            total_frames_current_job=active.frame_count if active is not None else 0,
            fps=fps,
            frames_done_total=finished + current_done,
            total_frames_all=sum(j.frame_count for j in jobs),
            jobs_done=sum(1 for j in jobs if j.status.is_terminal),
            jobs_total=len(jobs),
        )

    def _poll_progress(self, job: Job, stop: threading.Event) -> None:
        while not stop.wait(self.progress_period):
            self._notify("on_progress_update", job, self.snapshot())

    # loop

    def _next_job(self) -> Job | None:
        with self._lock:
            if self._stop:
                return None
            job = next((j for j in self._jobs if j.status is JobStatus.QUEUED), None)
            if job is not None:
                job.transition(JobStatus.RUNNING, "")
                job.time_started = time.time()
                self._active = job
                self._cancel_active = False
            return job

    def _complete(self, job: Job, status: JobStatus, message: str) -> None:
        with self._lock:
            job.time_completed = time.time()
            job.transition(status, message)
        if status is JobStatus.FINISHED:
            log.info("Job completed: %s", job.name)
        elif status is JobStatus.CANCELLED:
            log.warning("Job was cancelled: %s", job.name)
        else:
            log.error("Job failed: %s, cause = [ %s ]", job.name, message)
        self._notify("on_job_completed", job)
        self._completions.put(job)

    def _run_loop(self, params: EncoderParameters) -> None:
        try:
            while (job := self._next_job()) is not None:
                try:
                    job.segments = self._build(job, params)
                except Exception as e:
                    if isinstance(e, X264qError):
                        message = str(e)
                    else:
                        log.exception("Unexpected failure building job %s", job.name)
                        message = f"{type(e).__name__}: {e}"
                    self._complete(job, JobStatus.FAILED, message)
                    self._completions.get()
                    with self._lock:
                        self._active = None
                    continue

                pipeline = JobPipeline(job, params, self._complete, merge=self._merge)
                with self._lock:
                    self._pipeline = pipeline
                    if self._cancel_active or self._stop:
                        pipeline.cancel()

                stop_polling = threading.Event()
                poller = threading.Thread(target=self._poll_progress, args=(job, stop_polling),
                                          name="x264q-progress", daemon=True)
                poller.start()
                pipeline.start()

                self._completions.get()
                stop_polling.set()
                pipeline.join()
                poller.join()
                with self._lock:
                    self._pipeline = None
                    self._active = None
        except Exception:
            log.exception("Scheduler loop stopped")
        finally:
            with self._lock:
                self._loop = None
                self._active = None
                self._pipeline = None
                self._stop = False
            self._notify("on_all_jobs_completed")
