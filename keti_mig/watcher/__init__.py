"""
Watcher Module - Pod / SliceInventory watch

이벤트를 workload key (namespace/name) 로 바꿔 WorkQueue 에 넣는다.
- Pod 이벤트: 우리 gate / finalizer / MIG resource 가 있는 Pod
- Inventory 이벤트: node agent 가 created / deleted 로 바꾼 allocation 의 Pod

Watch 가 끊기면 5초 후 다시 연결한다.
"""

import logging
import threading
import time
from typing import List

from ..config import GATE_NAME, FINALIZER_NAME, MIG_RESOURCE_PREFIX
from ..gate import has_gate, has_finalizer
from ..inventory import AllocationStatus, SliceInventory
from ..workload import pod_key

logger = logging.getLogger(__name__)

RESTART_DELAY_SECONDS = 5

# node agent 의 진행을 알리는 상태
WAKEUP_STATUSES = (AllocationStatus.CREATED, AllocationStatus.DELETED)


def requests_mig_slice(pod: dict, prefix: str = MIG_RESOURCE_PREFIX) -> bool:
    for container in (pod.get('spec') or {}).get('containers') or []:
        limits = (container.get('resources') or {}).get('limits') or {}
        if any(k.startswith(prefix) for k in limits):
            return True
    return False


def is_managed_workload(pod: dict) -> bool:
    """이 controller 가 관심 있는 Pod 인지"""
    return (has_gate(pod, GATE_NAME)
            or has_finalizer(pod, FINALIZER_NAME)
            or requests_mig_slice(pod))


def workload_keys_for_inventory(record: SliceInventory) -> List[str]:
    """Inventory 변경 -> 깨워야 할 workload key 목록"""
    keys = []
    for workload_id in sorted(record.allocations):
        allocation = record.allocations[workload_id]
        if allocation.status in WAKEUP_STATUSES:
            keys.append(allocation.workload_key)
    return keys


class EventWatcher:
    """
    Pod / SliceInventory watcher

    - workloads.watch(): (event_type, pod dict)
    - inventory.watch(): (event_type, SliceInventory)
    """

    def __init__(self, queue, workloads, inventory):
        self.queue = queue
        self.workloads = workloads
        self.inventory = inventory
        self.running = False
        self.threads = []
        self.pod_events = 0
        self.inventory_events = 0

    @property
    def ready(self) -> bool:
        return self.running and all(t.is_alive() for t in self.threads)

    def start(self):
        """Start both watch loops"""
        self.running = True
        self.threads = [
            threading.Thread(target=self._loop, args=("pods", self._watch_pods),
                             name="pod-watcher", daemon=True),
            threading.Thread(target=self._loop, args=("inventory", self._watch_inventory),
                             name="inventory-watcher", daemon=True),
        ]
        for t in self.threads:
            t.start()
        logger.info("EventWatcher started")

    def stop(self):
        self.running = False
        for t in self.threads:
            t.join(timeout=5)
        logger.info("EventWatcher stopped")

    def _loop(self, name: str, watch_fn):
        while self.running:
            try:
                watch_fn()
            except Exception as e:
                logger.error(f"Error in {name} watch: {e}")
                time.sleep(RESTART_DELAY_SECONDS)

    def _watch_pods(self):
        for event_type, pod in self.workloads.watch():
            if not self.running:
                return
            self.handle_pod_event(event_type, pod)

    def _watch_inventory(self):
        for event_type, record in self.inventory.watch():
            if not self.running:
                return
            self.handle_inventory_event(event_type, record)

    def handle_pod_event(self, event_type: str, pod: dict):
        if not is_managed_workload(pod):
            return
        self.pod_events += 1
        key = pod_key(pod)
        logger.debug(f"Pod {event_type.lower()}: {key}")
        self.queue.add(key)

    def handle_inventory_event(self, event_type: str, record: SliceInventory):
        if event_type == 'DELETED':
            return
        self.inventory_events += 1
        for key in workload_keys_for_inventory(record):
            logger.debug(f"Inventory {record.name} changed, waking {key}")
            self.queue.add(key)


__all__ = ["EventWatcher", "workload_keys_for_inventory", "is_managed_workload", "requests_mig_slice"]
