"""Tests for result handling in the reconcile worker pool."""

from __future__ import annotations

import pytest

from keti_mig.controller import Result
from keti_mig.policy import ConfigurationError
from keti_mig.worker import ReconcileWorkerPool
from keti_mig.workqueue import WorkQueue


class ScriptedReconciler:
    def __init__(self, outcome):
        self.outcome = outcome
        self.keys = []

    def reconcile(self, key):
        self.keys.append(key)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class RecordingQueue(WorkQueue):
    def __init__(self):
        super().__init__()
        self.delays = []

    def add_after(self, key, delay):
        self.delays.append((key, delay))
        super().add_after(key, delay)


@pytest.mark.parametrize(
    "outcome, ready, delays",
    [
        (Result.done("steady"), 0, []),
        (Result.retry_now("inventory-conflict"), 1, []),
        (Result.retry_after(2, "allocation-creating"), 0, [("default/w1", 2)]),
        (ConfigurationError("two profiles"), 0, []),
        (RuntimeError("boom"), 0, [("default/w1", 1)]),
    ],
    ids=["done", "retry-now", "retry-after", "configuration-error", "unexpected-error"],
)
def test_results_schedule_the_next_pass(outcome, ready, delays):
    queue = RecordingQueue()
    pool = ReconcileWorkerPool(queue, ScriptedReconciler(outcome), workers=1)

    pool.process("default/w1")

    assert len(queue) == ready
    assert queue.delays == delays


def test_workers_drain_the_queue_and_stop():
    queue = WorkQueue()
    reconciler = ScriptedReconciler(Result.done("steady"))
    pool = ReconcileWorkerPool(queue, reconciler, workers=2)
    queue.add("default/a")
    queue.add("default/b")

    pool.start()
    pool.stop()

    assert all(not t.is_alive() for t in pool.threads)
    assert set(reconciler.keys) <= {"default/a", "default/b"}
