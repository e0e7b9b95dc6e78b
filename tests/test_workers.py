"""Tests for the worker pool and its ordered reassembly channel."""

import random
import threading
import time

import pytest

from cliptrail.workers import WorkerPool


def _sleeper(value, delay):
    def task():
        time.sleep(delay)
        return value
    return task


class TestRunOrderedChannel:
    def test_returns_results_in_submission_order(self):
        pool = WorkerPool(2)
        delays = [0.03, 0.005, 0.015]
        results = pool.run_ordered_channel(_sleeper(d, d) for d in delays)
        assert [f.result() for f in results] == delays

    def test_random_completion_skew(self):
        pool = WorkerPool(8)
        rng = random.Random(1234)
        delays = [rng.uniform(0, 0.01) for _ in range(64)]
        results = pool.run_ordered_channel(_sleeper(i, d) for i, d in enumerate(delays))
        assert [f.result() for f in results] == list(range(64))

    def test_handles_empty_task_list(self):
        pool = WorkerPool(4)
        assert list(pool.run_ordered_channel([])) == []

    def test_reuses_workers_across_runs(self):
        pool = WorkerPool(3)
        for round_ in range(3):
            results = pool.run_ordered_channel(
                (lambda v=round_ * 10 + n: v) for n in range(5)
            )
            assert [f.result() for f in results] == [round_ * 10 + n for n in range(5)]

    def test_task_failure_is_carried_not_raised(self):
        pool = WorkerPool(2)

        def boom():
            raise RuntimeError("bad clip")

        futures = list(pool.run_ordered_channel([lambda: 1, boom, lambda: 3]))
        assert futures[0].result() == 1
        with pytest.raises(RuntimeError, match="bad clip"):
            futures[1].result()
        assert futures[2].result() == 3

    def test_pool_survives_failing_tasks(self):
        pool = WorkerPool(1)

        def boom():
            raise ValueError("x")

        list(pool.run_ordered_channel([boom, boom]))
        results = pool.run_ordered_channel([lambda: "still alive"])
        assert [f.result() for f in results] == ["still alive"]

    def test_tasks_are_submitted_before_iteration(self):
        pool = WorkerPool(2)
        started = threading.Event()

        def task():
            started.set()
            return True

        results = pool.run_ordered_channel([task])
        assert started.wait(timeout=2.0)
        assert [f.result() for f in results] == [True]


class TestRunChannel:
    def test_yields_every_result(self):
        pool = WorkerPool(4)
        delays = [0.02, 0.0, 0.01, 0.005]
        results = pool.run_channel(_sleeper(i, d) for i, d in enumerate(delays))
        assert sorted(f.result() for f in results) == [0, 1, 2, 3]

    def test_completion_order(self):
        pool = WorkerPool(2)
        results = pool.run_channel([_sleeper("slow", 0.2), _sleeper("fast", 0.0)])
        assert [f.result() for f in results] == ["fast", "slow"]

    def test_runs_in_parallel(self):
        pool = WorkerPool(4)
        barrier = threading.Barrier(4, timeout=2.0)

        def task():
            barrier.wait()
            return True

        # Deadlocks (and times out) unless all four run at once
        results = pool.run_channel([task] * 4)
        assert all(f.result() for f in results)

    def test_empty(self):
        assert list(WorkerPool(1).run_channel([])) == []


class TestWorkerPool:
    def test_thread_count_clamped(self):
        assert WorkerPool(0).threads == 1
        assert WorkerPool(-3).threads == 1

    def test_zero_threads_still_runs(self):
        results = WorkerPool(0).run_ordered_channel([lambda: 42])
        assert [f.result() for f in results] == [42]
