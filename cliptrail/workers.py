"""Fixed-size worker pool with completion-order and submission-order channels.

Tasks are zero-argument callables. Each task's outcome travels back to the
caller as a completed :class:`concurrent.futures.Future` so that a task
which raises never takes down a worker; the caller decides what a failure
means by calling ``future.result()``.
"""

import heapq
import logging
import queue
import threading
from collections import deque
from concurrent.futures import Future
from typing import Callable, Iterable, Iterator, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")

_DONE = object()


class WorkerPool:
    """N daemon threads pulling jobs from one shared FIFO queue.

    The pool lives for as long as the process (or job) that owns it; there
    is no shutdown. It can be reused for any number of successive batches.
    """

    def __init__(self, threads: int) -> None:
        self.threads = max(1, int(threads))
        self._jobs: deque[Callable[[], None]] = deque()
        self._available = threading.Condition()

        for n in range(self.threads):
            t = threading.Thread(
                target=self._worker_loop, name=f"cliptrail-worker-{n}", daemon=True
            )
            t.start()
        logger.debug("Started worker pool with %d threads", self.threads)

    def _push(self, job: Callable[[], None]) -> None:
        with self._available:
            self._jobs.append(job)
            self._available.notify()

    def _next_job(self) -> Callable[[], None]:
        with self._available:
            while not self._jobs:
                self._available.wait()
            return self._jobs.popleft()

    def _worker_loop(self) -> None:
        while True:
            job = self._next_job()
            job()

    def _run_indexed_channel(
        self, tasks: Iterable[Callable[[], R]]
    ) -> tuple["queue.Queue[tuple[int, Future]]", int]:
        """Enqueue every task, tagged with its submission index.

        Returns the completion queue and the number of tasks submitted.
        """
        completed: "queue.Queue[tuple[int, Future]]" = queue.Queue()
        count = 0
        for idx, task in enumerate(tasks):
            self._push(_make_job(idx, task, completed))
            count += 1
        return completed, count

    def run_channel(self, tasks: Iterable[Callable[[], R]]) -> Iterator[Future]:
        """Run *tasks* and yield their futures as they complete (any order)."""
        completed, count = self._run_indexed_channel(tasks)
        return _drain_unordered(completed, count)

    def run_ordered_channel(self, tasks: Iterable[Callable[[], R]]) -> Iterator[Future]:
        """Run *tasks* and yield their futures in submission order."""
        completed, count = self._run_indexed_channel(tasks)
        ordered: queue.Queue = queue.Queue()
        threading.Thread(
            target=_reorder, args=(completed, count, ordered), daemon=True
        ).start()
        return _drain_ordered(ordered)


def _make_job(
    idx: int, task: Callable[[], R], completed: "queue.Queue[tuple[int, Future]]"
) -> Callable[[], None]:
    def job() -> None:
        future: Future = Future()
        try:
            future.set_result(task())
        except Exception as e:
            future.set_exception(e)
        completed.put((idx, future))

    return job


def _reorder(
    completed: "queue.Queue[tuple[int, Future]]", count: int, ordered: queue.Queue
) -> None:
    """Release completions in index order as soon as a contiguous prefix exists."""
    next_expected = 0
    buffer: list[tuple[int, Future]] = []

    for _ in range(count):
        heapq.heappush(buffer, completed.get())
        while buffer and buffer[0][0] == next_expected:
            _, future = heapq.heappop(buffer)
            ordered.put(future)
            next_expected += 1

    ordered.put(_DONE)


def _drain_unordered(
    completed: "queue.Queue[tuple[int, Future]]", count: int
) -> Iterator[Future]:
    for _ in range(count):
        _, future = completed.get()
        yield future


def _drain_ordered(ordered: queue.Queue) -> Iterator[Future]:
    while True:
        item = ordered.get()
        if item is _DONE:
            return
        yield item
