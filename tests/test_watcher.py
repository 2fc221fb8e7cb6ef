"""Tests for event to workload key mapping."""

from __future__ import annotations

from conftest import make_allocation, make_inventory, make_pod
from keti_mig.inventory import AllocationStatus
from keti_mig.watcher import EventWatcher, is_managed_workload, workload_keys_for_inventory
from keti_mig.workqueue import WorkQueue


def _drain(queue):
    keys = []
    while True:
        key = queue.get(timeout=0)
        if key is None:
            return keys
        keys.append(key)
        queue.done(key)


def test_only_agent_progress_wakes_workloads():
    record = make_inventory(allocations=[
        make_allocation(workload_id="uid-1", name="created", status=AllocationStatus.CREATED, start=0),
        make_allocation(workload_id="uid-2", name="deleted", status=AllocationStatus.DELETED, start=1),
        make_allocation(workload_id="uid-3", name="creating", status=AllocationStatus.CREATING, start=2),
        make_allocation(workload_id="uid-4", name="ungated", status=AllocationStatus.UNGATED, start=3),
    ])

    assert workload_keys_for_inventory(record) == ["default/created", "default/deleted"]


def test_managed_workload_detection():
    plain = make_pod(gated=False, finalizer=False)
    plain["spec"]["containers"][0]["resources"] = {}

    assert is_managed_workload(make_pod())
    assert is_managed_workload(make_pod(gated=False))
    assert is_managed_workload(make_pod(gated=False, finalizer=False))
    assert not is_managed_workload(plain)


def test_pod_events_are_filtered_and_queued():
    queue = WorkQueue()
    watcher = EventWatcher(queue, workloads=None, inventory=None)
    plain = make_pod(name="web", gated=False, finalizer=False)
    plain["spec"]["containers"][0]["resources"] = {}

    watcher.handle_pod_event("ADDED", make_pod(name="trainer", namespace="ml"))
    watcher.handle_pod_event("MODIFIED", plain)

    assert _drain(queue) == ["ml/trainer"]
    assert watcher.pod_events == 1


def test_deleted_inventory_records_are_ignored():
    queue = WorkQueue()
    watcher = EventWatcher(queue, workloads=None, inventory=None)
    record = make_inventory(allocations=[make_allocation(status=AllocationStatus.CREATED)])

    watcher.handle_inventory_event("DELETED", record)
    assert _drain(queue) == []

    watcher.handle_inventory_event("MODIFIED", record)
    assert _drain(queue) == ["default/w1"]
    assert watcher.inventory_events == 1


def test_watcher_is_not_ready_before_start():
    watcher = EventWatcher(WorkQueue(), workloads=None, inventory=None)

    assert not watcher.ready
