"""Per-job context: identity, cooperative cancellation, and progress reporting."""

import logging
import threading
from typing import Callable

from cliptrail.models import ProgressUpdate

logger = logging.getLogger(__name__)


class JobCancelledError(RuntimeError):
    """Raised at a checkpoint once the owning job has been cancelled."""

    def __init__(self, message: str = "job is cancelled") -> None:
        super().__init__(message)


class JobInfo:
    """Shared, thread-safe handle passed into every task a job dispatches.

    Args:
        job_id: Identifier used in log lines and by the web surface.
        on_progress: Optional sink receiving every :class:`ProgressUpdate`.
    """

    def __init__(
        self,
        job_id: int | str = 0,
        on_progress: Callable[[ProgressUpdate], None] | None = None,
    ) -> None:
        self.id = job_id
        self._on_progress = on_progress
        self._cancelled = threading.Event()

    def set_progress(self, update: ProgressUpdate) -> None:
        if update.detail:
            if update.detail.startswith("WARN:"):
                logger.warning("[job %s] %s", self.id, update.detail.strip())
            else:
                logger.info("[job %s] %s", self.id, update.detail)
        if self._on_progress:
            self._on_progress(update)

    def detail(self, text: str) -> None:
        self.set_progress(ProgressUpdate.detail_only(text))

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check_cancelled(self) -> None:
        """Raise JobCancelledError if cancel() has been called."""
        if self._cancelled.is_set():
            raise JobCancelledError()
