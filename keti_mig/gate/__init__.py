"""
Gate / Finalizer Module

- Gate: 할당이 준비될 때까지 스케줄링 차단 (keti.io/mig-gate)
- Finalizer: slice 정리가 끝날 때까지 Pod 삭제 차단

다른 gate 는 건드리지 않는다. 다른 gate 가 남아 있으면 이 controller 는
아무 것도 하지 않는다.

모든 변경 함수는 새 pod dict 를 돌려준다 (입력은 변경하지 않음).
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Optional

from ..config import GATE_NAME, FINALIZER_NAME, NODE_LABEL

logger = logging.getLogger(__name__)

PHASE_PENDING = "Pending"
PHASE_SUCCEEDED = "Succeeded"
PHASE_FAILED = "Failed"

CONDITION_POD_SCHEDULED = "PodScheduled"
REASON_SCHEDULING_GATED = "SchedulingGated"


def _gates(pod: dict) -> list:
    return (pod.get('spec') or {}).get('schedulingGates') or []


def _finalizers(pod: dict) -> list:
    return (pod.get('metadata') or {}).get('finalizers') or []


def _scheduling_blocked(pod: dict) -> bool:
    for condition in (pod.get('status') or {}).get('conditions') or []:
        if condition.get('type') != CONDITION_POD_SCHEDULED:
            continue
        if condition.get('reason') == REASON_SCHEDULING_GATED:
            return True
        if 'blocked' in (condition.get('message') or ''):
            return True
    return False


def phase(pod: dict) -> str:
    return (pod.get('status') or {}).get('phase', '')


def is_gated_by_us(pod: dict, gate_name: str = GATE_NAME) -> bool:
    """Our gate is present and the scheduler reports the pod as gated"""
    if not any(g.get('name') == gate_name for g in _gates(pod)):
        return False
    return phase(pod) == PHASE_PENDING and _scheduling_blocked(pod)


def is_gated_by_others(pod: dict, gate_name: str = GATE_NAME) -> bool:
    return any(g.get('name') != gate_name for g in _gates(pod))


def has_gate(pod: dict, gate_name: str = GATE_NAME) -> bool:
    return any(g.get('name') == gate_name for g in _gates(pod))


def has_finalizer(pod: dict, finalizer: str = FINALIZER_NAME) -> bool:
    return finalizer in _finalizers(pod)


def add_finalizer(pod: dict, finalizer: str = FINALIZER_NAME) -> dict:
    updated = copy.deepcopy(pod)
    metadata = updated.setdefault('metadata', {})
    finalizers = list(metadata.get('finalizers') or [])
    if finalizer not in finalizers:
        finalizers.append(finalizer)
    metadata['finalizers'] = finalizers
    return updated


def remove_finalizer(pod: dict, finalizer: str = FINALIZER_NAME) -> dict:
    updated = copy.deepcopy(pod)
    metadata = updated.setdefault('metadata', {})
    metadata['finalizers'] = [f for f in metadata.get('finalizers') or [] if f != finalizer]
    return updated


def ungate(pod: dict, node_name: str, gate_name: str = GATE_NAME,
           node_label: str = NODE_LABEL) -> dict:
    """
    Gate 제거 + nodeSelector 설정

    두 변경은 같은 update 로 나가야 한다. 그래야 Pod 가 할당된 노드에만
    스케줄된다.
    """
    updated = copy.deepcopy(pod)
    spec = updated.setdefault('spec', {})
    node_selector = dict(spec.get('nodeSelector') or {})
    node_selector[node_label] = node_name
    spec['nodeSelector'] = node_selector
    spec['schedulingGates'] = [g for g in spec.get('schedulingGates') or []
                               if g.get('name') != gate_name]
    return updated


def is_terminal(pod: dict) -> bool:
    return phase(pod) in (PHASE_FAILED, PHASE_SUCCEEDED)


def deletion_timestamp(pod: dict) -> Optional[datetime]:
    value = (pod.get('metadata') or {}).get('deletionTimestamp')
    if not value:
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def deletion_requested(pod: dict) -> bool:
    return deletion_timestamp(pod) is not None


__all__ = [
    "is_gated_by_us", "is_gated_by_others", "has_gate", "has_finalizer",
    "add_finalizer", "remove_finalizer", "ungate",
    "is_terminal", "deletion_timestamp", "deletion_requested", "phase",
    "PHASE_PENDING", "PHASE_SUCCEEDED", "PHASE_FAILED",
]
