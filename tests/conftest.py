"""Pytest fixtures and in-memory fakes for the MIG slice controller tests."""

from __future__ import annotations

import copy
import random
from datetime import datetime, timedelta, timezone

import pytest

from keti_mig.config import FINALIZER_NAME, GATE_NAME
from keti_mig.controller import SliceReconciler
from keti_mig.health import HealthCheckError
from keti_mig.inventory import (
    Allocation,
    AllocationStatus,
    InventoryConflict,
    InventoryError,
    InventoryNotFound,
    InventoryRepository,
    PreparedSlice,
    ProfilePlacement,
    SliceInventory,
    SlicePlacement,
)
from keti_mig.policy import FirstFitPolicy
from keti_mig.workload import WorkloadConflict, workload_key

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

# A100-40GB style placement table
A100_PLACEMENTS = {
    "1g.5gb": [(0, 1), (1, 1), (2, 1), (3, 1), (4, 1), (5, 1), (6, 1)],
    "2g.10gb": [(0, 2), (2, 2), (4, 2)],
    "3g.20gb": [(0, 4), (4, 4)],
    "7g.40gb": [(0, 8)],
}


class FakeInventoryRepository(InventoryRepository):
    """Versioned in-memory inventory store"""

    def __init__(self, records=()):
        self.records = {}
        self.versions = {}
        self.writes = []
        self.fail_list = False
        self.before_update = None
        for record in records:
            self.put(record)

    def put(self, record: SliceInventory):
        version = self.versions.get(record.name, 0) + 1
        self.versions[record.name] = version
        self.records[record.name] = record

    def _stamped(self, name: str) -> SliceInventory:
        record = self.records[name]
        metadata = dict(record.metadata)
        metadata['resourceVersion'] = str(self.versions[name])
        return SliceInventory(
            name=record.name, gpus=dict(record.gpus), placements=dict(record.placements),
            prepared=dict(record.prepared), allocations=dict(record.allocations),
            metadata=metadata,
        )

    def list(self):
        if self.fail_list:
            raise InventoryError("list failed")
        return [self._stamped(name) for name in self.records]

    def get(self, name):
        if name not in self.records:
            raise InventoryNotFound(name)
        record = self._stamped(name)
        return record, record.resource_version

    def update(self, name, record, expected_version):
        if self.before_update is not None:
            hook, self.before_update = self.before_update, None
            hook(self)
        if name not in self.records:
            raise InventoryNotFound(name)
        if str(self.versions[name]) != expected_version:
            raise InventoryConflict(name)
        self.put(record)
        self.writes.append(name)
        return self._stamped(name)

    def allocation(self, node: str, workload_id: str):
        return self.records[node].allocations.get(workload_id)

    def all_allocations(self):
        return [a for r in self.records.values() for a in r.allocations.values()]


class FakeWorkloadClient:
    """Pods keyed by namespace/name with resourceVersion checks"""

    def __init__(self, pods=()):
        self.pods = {}
        self.updates = []
        self.fail_updates = False
        for pod in pods:
            self.add(pod)

    def add(self, pod: dict):
        pod = copy.deepcopy(pod)
        key = workload_key(pod['metadata']['namespace'], pod['metadata']['name'])
        previous = self.pods.get(key)
        version = int(previous['metadata']['resourceVersion']) + 1 if previous else 1
        pod['metadata']['resourceVersion'] = str(version)
        self.pods[key] = pod

    def get(self, namespace, name):
        pod = self.pods.get(workload_key(namespace, name))
        return copy.deepcopy(pod) if pod is not None else None

    def update(self, pod):
        key = workload_key(pod['metadata']['namespace'], pod['metadata']['name'])
        current = self.pods[key]
        if self.fail_updates or current['metadata']['resourceVersion'] != pod['metadata']['resourceVersion']:
            raise WorkloadConflict(key)
        self.add(pod)
        self.updates.append(key)
        return copy.deepcopy(self.pods[key])

    def pod(self, key: str) -> dict:
        return self.pods[key]


class FakeHealthOracle:
    def __init__(self, healthy=True, error=False):
        self.healthy = healthy
        self.error = error
        self.calls = 0

    def is_healthy(self):
        self.calls += 1
        if self.error:
            raise HealthCheckError("api unavailable")
        return self.healthy


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


def make_pod(
    name="w1",
    namespace="default",
    uid="uid-w1",
    profile="1g.5gb",
    units=1,
    containers=1,
    gated=True,
    finalizer=True,
    phase="Pending",
    other_gates=(),
    deletion_timestamp=None,
    node_selector=None,
    cpu="500m",
    memory="1Gi",
):
    gates = [{"name": g} for g in other_gates]
    if gated:
        gates.append({"name": GATE_NAME})

    container_list = []
    for i in range(containers):
        container_list.append({
            "name": f"c{i}",
            "image": "busybox",
            "resources": {
                "limits": {f"nvidia.com/mig-{profile}": str(units)},
                "requests": {"cpu": cpu, "memory": memory},
            },
        })

    conditions = []
    if gated or other_gates:
        conditions.append({
            "type": "PodScheduled",
            "status": "False",
            "reason": "SchedulingGated",
            "message": "Scheduling is blocked due to non-empty scheduling gates",
        })

    metadata = {"name": name, "namespace": namespace, "uid": uid}
    if finalizer:
        metadata["finalizers"] = [FINALIZER_NAME]
    if deletion_timestamp is not None:
        metadata["deletionTimestamp"] = deletion_timestamp.strftime("%Y-%m-%dT%H:%M:%SZ")

    spec = {"containers": container_list, "schedulingGates": gates}
    if node_selector:
        spec["nodeSelector"] = dict(node_selector)

    return {
        "metadata": metadata,
        "spec": spec,
        "status": {"phase": phase, "conditions": conditions},
    }


def make_allocation(
    node="node-1",
    device="GPU-A",
    start=0,
    size=1,
    status=AllocationStatus.CREATING,
    workload_id="uid-w1",
    name="w1",
    namespace="default",
    profile="1g.5gb",
):
    return Allocation(
        profile=profile,
        start=start,
        size=size,
        workload_id=workload_id,
        node_name=node,
        device_id=device,
        status=status,
        namespace=namespace,
        workload_name=name,
        resource_identifier="res-1",
    )


def make_inventory(name="node-1", gpus=("GPU-A",), placements=None, allocations=(), prepared=None):
    table = placements if placements is not None else A100_PLACEMENTS
    return SliceInventory(
        name=name,
        gpus={g: "NVIDIA A100-PCIE-40GB" for g in gpus},
        placements={
            profile: ProfilePlacement(
                profile=profile,
                gi_profile_id=index,
                ci_profile_id=index,
                ci_eng_profile_id=0,
                placements=tuple(SlicePlacement(start=s, size=z) for s, z in slots),
            )
            for index, (profile, slots) in enumerate(sorted(table.items()))
        },
        prepared=dict(prepared or {}),
        allocations={a.workload_id: a for a in allocations},
        metadata={"name": name, "namespace": "default"},
    )


def make_prepared(device="GPU-A", start=0, size=1, owner="uid-w1"):
    return PreparedSlice(owner_workload_id=owner, parent_device_id=device,
                         start=start, size=size, gi_id=1, ci_id=0)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def inventory():
    return FakeInventoryRepository([make_inventory()])


@pytest.fixture
def workloads():
    return FakeWorkloadClient()


@pytest.fixture
def health():
    return FakeHealthOracle()


@pytest.fixture
def reconciler(inventory, workloads, health, clock):
    return SliceReconciler(
        inventory=inventory,
        workloads=workloads,
        health=health,
        policy=FirstFitPolicy(),
        clock=clock,
        rng=random.Random(7),
    )
