"""
Controller Module - MIG slice allocation reconciler (핵심 로직)

Workload(Pod) 하나에 대해 한 번의 reconcile pass 를 수행한다.

Allocation 상태 흐름:
    creating -> created -> ungated -> deleting -> deleted -> (삭제)

- creating: controller 가 위치를 정하고 기록
- created: node agent 가 slice 를 실제로 생성
- ungated: controller 가 gate 를 제거하고 nodeSelector 를 설정
- deleting: controller 가 정리 요청
- deleted: node agent 가 slice 를 제거, controller 가 기록을 지움

Pass 는 sleep 하지 않는다. 대기는 Result (retry_now / retry_after) 로 표현한다.
Inventory 쓰기 직전에는 항상 대상 레코드를 다시 읽고, 쓰기 충돌은
retry_now 로 돌려준다. 다음 pass 가 최신 상태를 보고 다시 판단한다.
"""

import logging
import random
import threading
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from ..config import (
    GATE_NAME, FINALIZER_NAME, NODE_LABEL,
    DEPENDENCY_RETRY_SECONDS, UPDATE_RETRY_SECONDS,
    NO_CAPACITY_MIN_SECONDS, NO_CAPACITY_MAX_SECONDS, GRACE_PERIOD_SECONDS,
    PLACEMENT_POLICY,
)
from ..gate import (
    is_gated_by_us, is_gated_by_others, has_finalizer, add_finalizer,
    remove_finalizer, ungate, is_terminal, deletion_timestamp, deletion_requested,
)
from ..health import HealthCheckError
from ..inventory import (
    Allocation, AllocationStatus, SliceInventory, PreparedSlice, find_allocation,
    InventoryRepository, InventoryError, InventoryConflict, InventoryNotFound,
)
from ..policy import PlacementPolicy, build_slice_request, get_policy
from ..workload import WorkloadError, split_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Result:
    """Reconcile 결과 (다음 pass 시점)"""
    requeue: bool = False
    requeue_after: float = 0.0
    reason: str = ""

    @classmethod
    def done(cls, reason: str = "") -> "Result":
        return cls(reason=reason)

    @classmethod
    def retry_now(cls, reason: str = "") -> "Result":
        return cls(requeue=True, reason=reason)

    @classmethod
    def retry_after(cls, seconds: float, reason: str = "") -> "Result":
        return cls(requeue_after=max(float(seconds), 0.0), reason=reason)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SliceReconciler:
    """
    MIG Slice Reconciler

    Args:
        inventory: InventoryRepository (SliceInventory CR)
        workloads: WorkloadClient (Pod get/update)
        health: NodeHealthOracle (device plugin 상태)
        policy: PlacementPolicy (기본: config 의 PLACEMENT_POLICY)
        clock: 현재 시각 (timezone-aware datetime)
        rng: no-capacity backoff 용 random.Random
    """

    def __init__(
        self,
        inventory: InventoryRepository,
        workloads,
        health,
        policy: PlacementPolicy = None,
        clock: Callable[[], datetime] = None,
        rng: random.Random = None,
        gate_name: str = GATE_NAME,
        finalizer: str = FINALIZER_NAME,
        node_label: str = NODE_LABEL,
        grace_period: float = GRACE_PERIOD_SECONDS,
    ):
        self.inventory = inventory
        self.workloads = workloads
        self.health = health
        self.policy = policy or get_policy(PLACEMENT_POLICY)
        self.clock = clock or _utcnow
        self.rng = rng or random.Random()
        self.gate_name = gate_name
        self.finalizer = finalizer
        self.node_label = node_label
        self.grace_period = grace_period

        self._lock = threading.Lock()
        self._stats = Counter()

        logger.info(f"SliceReconciler initialized (policy={self.policy.name}, "
                    f"gate={gate_name}, finalizer={finalizer})")

    # =========================================================================
    # Entry point
    # =========================================================================

    def reconcile(self, key: str) -> Result:
        """
        Run one pass for namespace/name

        Raises:
            ConfigurationError: workload 요청 형식이 잘못됨 (재시도하지 않음)
        """
        self._count("passes")
        try:
            result = self._reconcile(key)
        except Exception:
            self._count("errors")
            raise
        self._count(f"result:{result.reason or 'done'}")
        return result

    def get_stats(self) -> dict:
        with self._lock:
            return dict(self._stats)

    def _count(self, name: str):
        with self._lock:
            self._stats[name] += 1

    def _reconcile(self, key: str) -> Result:
        namespace, name = split_key(key)
        snapshot = self._list_inventory()

        try:
            pod = self.workloads.get(namespace, name)
        except WorkloadError as e:
            logger.error(f"Unable to fetch pod {key}: {e}")
            return Result.retry_after(UPDATE_RETRY_SECONDS, "workload-read-failed")

        if pod is None:
            logger.info(f"Pod {key} not found, might be deleted")
            return self._cleanup_missing_workload(namespace, name, snapshot)

        # 다른 gate 가 남아 있으면 아직 우리 차례가 아님
        if is_gated_by_others(pod, self.gate_name):
            return Result.done("gated-by-others")

        gated = is_gated_by_us(pod, self.gate_name)
        finalized = has_finalizer(pod, self.finalizer)

        if not gated and not finalized:
            return Result.done("not-managed")

        if gated and not finalized:
            return self._add_finalizer(key, pod)

        workload_id = (pod.get('metadata') or {}).get('uid', '')
        _, allocation = find_allocation(snapshot, workload_id)

        if is_terminal(pod):
            return self._handle_terminal(key, pod, allocation)

        if deletion_requested(pod):
            if gated:
                return self._handle_deleted_while_gated(key, pod, allocation)
            return self._handle_deleted_while_running(key, pod, allocation)

        if gated:
            return self._progress(key, pod, snapshot, allocation)

        return Result.done("steady")

    # =========================================================================
    # Decision table
    # =========================================================================

    def _cleanup_missing_workload(self, namespace: str, name: str,
                                  snapshot: Iterable[SliceInventory]) -> Result:
        for record in snapshot:
            for allocation in record.find_allocations_for(namespace, name):
                if not self._remove_allocation(allocation):
                    return Result.retry_now("inventory-write-failed")
        return Result.done("workload-gone")

    def _add_finalizer(self, key: str, pod: dict) -> Result:
        if not self._update_workload(add_finalizer(pod, self.finalizer)):
            logger.error(f"Failed to add finalizer to pod {key}")
            return Result.retry_now("workload-write-failed")
        logger.info(f"Finalizer added to pod {key}")
        return Result.retry_now("finalizer-added")

    def _handle_terminal(self, key: str, pod: dict, allocation: Optional[Allocation]) -> Result:
        """Failed / Succeeded pod: slice 정리 후 finalizer 제거"""
        if allocation is None:
            return self._release_finalizer(key, pod)

        status = allocation.status
        if status == AllocationStatus.CREATING:
            # slice 생성 중에는 건드리지 않음
            return Result.retry_after(DEPENDENCY_RETRY_SECONDS, "allocation-creating")

        if status in (AllocationStatus.CREATED, AllocationStatus.UNGATED):
            if not self._transition(allocation, (AllocationStatus.CREATED, AllocationStatus.UNGATED),
                                    AllocationStatus.DELETING):
                return Result.retry_now("inventory-write-failed")
            # node agent 가 deleted 로 바꾸면 inventory 이벤트로 다시 호출됨
            return Result.done("deleting")

        if status == AllocationStatus.DELETED:
            if not self._remove_allocation(allocation, only_status=AllocationStatus.DELETED):
                return Result.retry_now("inventory-write-failed")
            return Result.retry_after(DEPENDENCY_RETRY_SECONDS, "allocation-removed")

        return Result.done("waiting-for-agent")

    def _handle_deleted_while_gated(self, key: str, pod: dict,
                                    allocation: Optional[Allocation]) -> Result:
        """삭제 요청, 아직 ungate 되지 않은 pod"""
        if allocation is None:
            return self._release_finalizer(key, pod)

        status = allocation.status
        if status in (AllocationStatus.CREATED, AllocationStatus.UNGATED):
            if not self._transition(allocation, (AllocationStatus.CREATED, AllocationStatus.UNGATED),
                                    AllocationStatus.DELETING):
                return Result.retry_after(UPDATE_RETRY_SECONDS, "inventory-write-failed")
            return Result.done("deleting")

        if status == AllocationStatus.DELETED:
            return self._finish_cleanup(key, pod, allocation)

        if status == AllocationStatus.CREATING:
            return Result.retry_after(DEPENDENCY_RETRY_SECONDS, "allocation-creating")

        return Result.done("waiting-for-agent")

    def _handle_deleted_while_running(self, key: str, pod: dict,
                                      allocation: Optional[Allocation]) -> Result:
        """삭제 요청, 실행 중인 pod: grace period 후 deleting"""
        if allocation is None:
            return self._release_finalizer(key, pod)

        status = allocation.status
        if status == AllocationStatus.DELETED:
            return self._finish_cleanup(key, pod, allocation)

        if status == AllocationStatus.DELETING:
            return Result.done("waiting-for-agent")

        elapsed = (self.clock() - deletion_timestamp(pod)).total_seconds()
        if elapsed < self.grace_period:
            remaining = self.grace_period - elapsed
            logger.debug(f"Pod {key} terminating, {remaining:.1f}s of grace period left")
            return Result.retry_after(remaining, "grace-period")

        if status == AllocationStatus.CREATING:
            return Result.retry_after(DEPENDENCY_RETRY_SECONDS, "allocation-creating")

        logger.info(f"Set allocation to deleting for pod {key}")
        if not self._transition(allocation, (AllocationStatus.CREATED, AllocationStatus.UNGATED),
                                AllocationStatus.DELETING):
            return Result.retry_after(UPDATE_RETRY_SECONDS, "inventory-write-failed")
        return Result.done("deleting")

    def _progress(self, key: str, pod: dict, snapshot: List[SliceInventory],
                  allocation: Optional[Allocation]) -> Result:
        """Gated pod: 할당 -> slice 생성 대기 -> ungate"""
        request = build_slice_request(pod, resource_identifier=str(uuid.uuid4()))

        if allocation is None:
            return self._allocate(key, request, snapshot)

        if allocation.status == AllocationStatus.CREATED:
            if not self._node_healthy():
                return Result.retry_after(DEPENDENCY_RETRY_SECONDS, "node-unhealthy")
            if not self._transition(allocation, (AllocationStatus.CREATED,), AllocationStatus.UNGATED):
                return Result.retry_now("inventory-write-failed")
            return self._ungate(key, pod, allocation)

        if allocation.status == AllocationStatus.UNGATED:
            # inventory 는 ungated 인데 gate 가 남아 있음 (ungate 직전 중단)
            if not self._node_healthy():
                return Result.retry_after(DEPENDENCY_RETRY_SECONDS, "node-unhealthy")
            return self._ungate(key, pod, allocation)

        return Result.done("waiting-for-agent")

    # =========================================================================
    # Steps
    # =========================================================================

    def _allocate(self, key: str, request, snapshot: List[SliceInventory]) -> Result:
        placed = self.policy.place(request, snapshot)
        if placed is None:
            delay = self.rng.randint(NO_CAPACITY_MIN_SECONDS, NO_CAPACITY_MAX_SECONDS)
            logger.info(f"No suitable node found in cluster for pod {key}, retry in {delay}s")
            return Result.retry_after(delay, "no-capacity")

        allocation = placed.with_status(AllocationStatus.CREATING)
        try:
            record, version = self.inventory.get(allocation.node_name)
        except InventoryError as e:
            logger.warning(f"Unable to read inventory {allocation.node_name}: {e}")
            return Result.retry_now("inventory-read-failed")

        if record.find_allocation(allocation.workload_id) is not None:
            return Result.done("already-allocated")

        conflict = record.range_conflict(allocation.device_id, allocation.start, allocation.size,
                                         ignore_workload=allocation.workload_id)
        if isinstance(conflict, PreparedSlice):
            logger.info(f"Prepared slice on {allocation.node_name}/{allocation.device_id} "
                        f"is yet to be deleted, retrying allocation for pod {key}")
            return Result.retry_now("prepared-slice-draining")
        if conflict is not None:
            logger.info(f"Slice on {allocation.node_name}/{allocation.device_id} taken by "
                        f"{conflict.workload_key}, retrying allocation for pod {key}")
            return Result.retry_now("slice-taken")

        try:
            self.inventory.update(record.name, record.with_allocation(allocation), version)
        except InventoryConflict:
            logger.info(f"Inventory {record.name} changed, retrying allocation for pod {key}")
            return Result.retry_now("inventory-conflict")
        except InventoryError as e:
            logger.error(f"Failed to write allocation for pod {key}: {e}")
            return Result.retry_now("inventory-write-failed")

        logger.info(f"Allocation obtained for pod {key}: {allocation.node_name}/"
                    f"{allocation.device_id} [{allocation.start}, {allocation.start + allocation.size}) "
                    f"{allocation.profile}")
        return Result.done("allocated")

    def _ungate(self, key: str, pod: dict, allocation: Allocation) -> Result:
        updated = ungate(pod, allocation.node_name, self.gate_name, self.node_label)
        if not self._update_workload(updated):
            return Result.retry_now("workload-write-failed")
        logger.info(f"Pod {key} ungated, pinned to node {allocation.node_name}")
        return Result.done("ungated")

    def _finish_cleanup(self, key: str, pod: dict, allocation: Allocation) -> Result:
        if not self._remove_allocation(allocation, only_status=AllocationStatus.DELETED):
            return Result.retry_now("inventory-write-failed")
        return self._release_finalizer(key, pod)

    def _release_finalizer(self, key: str, pod: dict) -> Result:
        if not has_finalizer(pod, self.finalizer):
            return Result.done("cleaned-up")
        if not self._update_workload(remove_finalizer(pod, self.finalizer)):
            logger.info(f"Unable to remove finalizer from pod {key}, retrying")
            return Result.retry_now("workload-write-failed")
        logger.info(f"Finalizer removed from pod {key}")
        return Result.done("cleaned-up")

    # =========================================================================
    # Inventory / workload writes
    # =========================================================================

    def _list_inventory(self) -> List[SliceInventory]:
        try:
            return self.inventory.list()
        except InventoryError as e:
            logger.error(f"Error listing slice inventory: {e}")
            return []

    def _transition(self, allocation: Allocation, expected, target: AllocationStatus) -> bool:
        """
        최신 레코드에서 allocation 상태를 expected -> target 으로 변경

        최신 상태가 expected 에 없으면 쓰지 않고 False (다음 pass 에서 재판단)
        """
        try:
            record, version = self.inventory.get(allocation.node_name)
        except InventoryError as e:
            logger.warning(f"Unable to read inventory {allocation.node_name}: {e}")
            return False

        current = record.find_allocation(allocation.workload_id)
        if current is None:
            logger.info(f"Allocation for {allocation.workload_key} disappeared from {record.name}")
            return False
        if current.status == target:
            return True
        if current.status not in expected:
            logger.info(f"Allocation for {allocation.workload_key} is {current.status_name}, "
                        f"not moving to {target.value}")
            return False

        try:
            self.inventory.update(record.name, record.with_allocation(current.with_status(target)), version)
        except InventoryError as e:
            logger.info(f"Unable to set allocation of {allocation.workload_key} to "
                        f"{target.value}: {e}")
            return False

        logger.info(f"Allocation {allocation.workload_key}: {current.status_name} -> {target.value}")
        return True

    def _remove_allocation(self, allocation: Allocation,
                           only_status: AllocationStatus = None) -> bool:
        try:
            record, version = self.inventory.get(allocation.node_name)
        except InventoryNotFound:
            return True
        except InventoryError as e:
            logger.error(f"Error getting latest inventory {allocation.node_name}: {e}")
            return False

        current = record.find_allocation(allocation.workload_id)
        if current is None:
            return True
        if only_status is not None and current.status != only_status:
            logger.info(f"Allocation for {allocation.workload_key} is {current.status_name}, "
                        f"not removing")
            return False

        try:
            self.inventory.update(record.name, record.without_allocation(allocation.workload_id), version)
        except InventoryError as e:
            logger.error(f"Error removing allocation of {allocation.workload_key}: {e}")
            return False

        logger.info(f"Done deleting allocation for pod {allocation.workload_key}")
        return True

    def _update_workload(self, pod: dict) -> bool:
        try:
            self.workloads.update(pod)
        except WorkloadError as e:
            logger.info(f"Pod update failed: {e}")
            return False
        return True

    def _node_healthy(self) -> bool:
        try:
            healthy = self.health.is_healthy()
        except HealthCheckError as e:
            logger.info(f"GPU operator device plugin state unknown: {e}")
            return False
        if not healthy:
            logger.info("GPU operator device plugin is not running yet, waiting")
        return healthy


__all__ = ["SliceReconciler", "Result"]
