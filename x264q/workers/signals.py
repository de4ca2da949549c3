# x264q/workers/signals.py
from PySide6.QtCore import QObject, Signal


class EncodingProgressListener:
    """Receives scheduler events. Called from scheduler and pipeline threads."""

    def on_progress_update(self, job, snapshot) -> None:
        pass

    def on_job_completed(self, job) -> None:
        pass

    def on_all_jobs_completed(self) -> None:
        pass


class QtProgressBridge(QObject):
    """
    Listener that re-emits scheduler events as Qt signals.

    Slots connected with the default connection type run in the thread of
    their receiver, so a window or a QCoreApplication loop gets the updates
    on its own thread.
    """
    progress = Signal(object, object)   # job, ProgressSnapshot
    job_done = Signal(object)           # job
    all_done = Signal()

    def on_progress_update(self, job, snapshot) -> None:
        self.progress.emit(job, snapshot)

    def on_job_completed(self, job) -> None:
        self.job_done.emit(job)

    def on_all_jobs_completed(self) -> None:
        self.all_done.emit()
