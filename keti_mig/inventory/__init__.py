"""
Inventory Module - per-node MIG slice inventory

노드 하나당 SliceInventory 하나:
- gpus: 노드의 GPU 디바이스 (uuid -> model)
- placements: profile 별 배치 가능한 위치 (node discovery 가 채움, read-only)
- prepared: node agent 가 실제로 생성한 slice (agent 만 쓰고 지움)
- allocations: workload 별 할당 기록 (controller 가 관리)

Snapshot 은 변경하지 않는다. with_allocation / without_allocation 은
새 레코드를 돌려준다.
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class AllocationStatus(str, Enum):
    """creating -> created -> ungated -> deleting -> deleted"""
    CREATING = "creating"
    CREATED = "created"
    UNGATED = "ungated"
    DELETING = "deleting"
    DELETED = "deleted"


def _overlaps(start_a: int, size_a: int, start_b: int, size_b: int) -> bool:
    return start_a < start_b + size_b and start_b < start_a + size_a


@dataclass(frozen=True)
class PreparedSlice:
    """Node agent 가 GPU 위에 실제로 만든 slice"""
    owner_workload_id: str
    parent_device_id: str
    start: int
    size: int
    gi_id: int = 0
    ci_id: int = 0

    def overlaps(self, device_id: str, start: int, size: int) -> bool:
        return self.parent_device_id == device_id and _overlaps(self.start, self.size, start, size)

    @classmethod
    def from_dict(cls, data: dict) -> "PreparedSlice":
        return cls(
            owner_workload_id=data.get('podUUID', ''),
            parent_device_id=data.get('parent', ''),
            start=int(data.get('start', 0)),
            size=int(data.get('size', 0)),
            gi_id=int(data.get('giinfo', 0)),
            ci_id=int(data.get('ciinfo', 0)),
        )

    def to_dict(self) -> dict:
        return {
            'podUUID': self.owner_workload_id,
            'parent': self.parent_device_id,
            'start': self.start,
            'size': self.size,
            'giinfo': self.gi_id,
            'ciinfo': self.ci_id,
        }


@dataclass(frozen=True)
class SlicePlacement:
    start: int
    size: int


@dataclass(frozen=True)
class ProfilePlacement:
    """Placement table entry for one profile"""
    profile: str
    gi_profile_id: int = 0
    ci_profile_id: int = 0
    ci_eng_profile_id: int = 0
    placements: Tuple[SlicePlacement, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "ProfilePlacement":
        return cls(
            profile=data.get('profile', ''),
            gi_profile_id=int(data.get('giprofileid', 0)),
            ci_profile_id=int(data.get('ciProfileid', 0)),
            ci_eng_profile_id=int(data.get('ciengprofileid', 0)),
            placements=tuple(
                SlicePlacement(start=int(p.get('start', 0)), size=int(p.get('size', 0)))
                for p in data.get('placements') or []
            ),
        )

    def to_dict(self) -> dict:
        return {
            'profile': self.profile,
            'giprofileid': self.gi_profile_id,
            'ciProfileid': self.ci_profile_id,
            'ciengprofileid': self.ci_eng_profile_id,
            'placements': [{'start': p.start, 'size': p.size} for p in self.placements],
        }


@dataclass(frozen=True)
class Allocation:
    """Workload 하나의 slice 할당 기록"""
    profile: str
    start: int
    size: int
    workload_id: str
    node_name: str
    device_id: str
    status: Optional[AllocationStatus]
    namespace: str
    workload_name: str
    resource_identifier: str = ""
    cpu_milli: int = 0
    memory: int = 0
    gi_profile_id: int = 0
    ci_profile_id: int = 0
    ci_eng_profile_id: int = 0

    @property
    def workload_key(self) -> str:
        return f"{self.namespace}/{self.workload_name}"

    @property
    def status_name(self) -> str:
        return self.status.value if self.status else "unknown"

    def overlaps(self, device_id: str, start: int, size: int) -> bool:
        return self.device_id == device_id and _overlaps(self.start, self.size, start, size)

    def with_status(self, status: AllocationStatus) -> "Allocation":
        return replace(self, status=status)

    @classmethod
    def from_dict(cls, data: dict) -> "Allocation":
        status = data.get('allocationStatus')
        return cls(
            profile=data.get('profile', ''),
            start=int(data.get('start', 0)),
            size=int(data.get('size', 0)),
            workload_id=data.get('podUUID', ''),
            node_name=data.get('nodename', ''),
            device_id=data.get('gpuUUID', ''),
            status=AllocationStatus(status) if status else None,
            namespace=data.get('namespace', ''),
            workload_name=data.get('podName', ''),
            resource_identifier=data.get('resourceIdentifier', ''),
            cpu_milli=int(data.get('cpu', 0)),
            memory=int(data.get('memory', 0)),
            gi_profile_id=int(data.get('giprofileid', 0)),
            ci_profile_id=int(data.get('ciProfileid', 0)),
            ci_eng_profile_id=int(data.get('ciengprofileid', 0)),
        )

    def to_dict(self) -> dict:
        return {
            'profile': self.profile,
            'start': self.start,
            'size': self.size,
            'podUUID': self.workload_id,
            'nodename': self.node_name,
            'gpuUUID': self.device_id,
            'allocationStatus': self.status.value if self.status else '',
            'namespace': self.namespace,
            'podName': self.workload_name,
            'resourceIdentifier': self.resource_identifier,
            'cpu': self.cpu_milli,
            'memory': self.memory,
            'giprofileid': self.gi_profile_id,
            'ciProfileid': self.ci_profile_id,
            'ciengprofileid': self.ci_eng_profile_id,
        }


@dataclass(frozen=True)
class SliceInventory:
    """SliceInventory custom resource (노드당 1개)"""
    name: str
    gpus: Dict[str, str] = field(default_factory=dict)
    placements: Dict[str, ProfilePlacement] = field(default_factory=dict)
    prepared: Dict[str, PreparedSlice] = field(default_factory=dict)
    allocations: Dict[str, Allocation] = field(default_factory=dict)
    metadata: Dict = field(default_factory=dict, compare=False)

    @property
    def resource_version(self) -> str:
        return self.metadata.get('resourceVersion', '')

    def device_ids(self) -> List[str]:
        """GPU ids, sorted. Falls back to devices referenced by prepared slices."""
        if self.gpus:
            return sorted(self.gpus)
        return sorted({p.parent_device_id for p in self.prepared.values()})

    def find_allocation(self, workload_id: str) -> Optional[Allocation]:
        return self.allocations.get(workload_id)

    def find_allocations_for(self, namespace: str, name: str) -> List[Allocation]:
        return [a for a in self.allocations.values()
                if a.namespace == namespace and a.workload_name == name]

    def range_conflict(self, device_id: str, start: int, size: int,
                       ignore_workload: str = None) -> Optional[Union[Allocation, PreparedSlice]]:
        """
        [start, start+size) 와 겹치는 Allocation / PreparedSlice 반환

        ignore_workload 의 allocation 은 무시 (자기 자신)
        """
        for slice_id in sorted(self.prepared):
            prepared = self.prepared[slice_id]
            if prepared.overlaps(device_id, start, size):
                return prepared
        for workload_id in sorted(self.allocations):
            if workload_id == ignore_workload:
                continue
            allocation = self.allocations[workload_id]
            if allocation.overlaps(device_id, start, size):
                return allocation
        return None

    def with_allocation(self, allocation: Allocation) -> "SliceInventory":
        allocations = dict(self.allocations)
        allocations[allocation.workload_id] = allocation
        return replace(self, allocations=allocations)

    def without_allocation(self, workload_id: str) -> "SliceInventory":
        allocations = dict(self.allocations)
        allocations.pop(workload_id, None)
        return replace(self, allocations=allocations)

    @classmethod
    def from_object(cls, obj: dict) -> "SliceInventory":
        """Custom resource JSON -> SliceInventory"""
        metadata = copy.deepcopy(obj.get('metadata') or {})
        metadata.pop('managedFields', None)
        spec = obj.get('spec') or {}

        try:
            placements = {}
            for item in spec.get('migPlacement') or []:
                entry = ProfilePlacement.from_dict(item)
                placements[entry.profile] = entry

            return cls(
                name=metadata.get('name', ''),
                gpus=dict(spec.get('migGPUUUID') or {}),
                placements=placements,
                prepared={k: PreparedSlice.from_dict(v) for k, v in (spec.get('prepared') or {}).items()},
                allocations={k: Allocation.from_dict(v) for k, v in (spec.get('allocations') or {}).items()},
                metadata=metadata,
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise InventoryFormatError(f"inventory {metadata.get('name', '?')} is malformed: {e}") from e

    def to_object(self, api_version: str = None, kind: str = 'SliceInventory') -> dict:
        metadata = copy.deepcopy(self.metadata)
        metadata['name'] = self.name
        obj = {
            'kind': kind,
            'metadata': metadata,
            'spec': {
                'migGPUUUID': dict(self.gpus),
                'migPlacement': [self.placements[p].to_dict() for p in sorted(self.placements)],
                'prepared': {k: v.to_dict() for k, v in self.prepared.items()},
                'allocations': {k: v.to_dict() for k, v in self.allocations.items()},
            },
        }
        if api_version:
            obj['apiVersion'] = api_version
        return obj


def find_allocation(snapshot: Iterable[SliceInventory],
                    workload_id: str) -> Tuple[Optional[SliceInventory], Optional[Allocation]]:
    """Cluster 전체에서 workload 의 allocation 검색"""
    for record in snapshot:
        allocation = record.find_allocation(workload_id)
        if allocation is not None:
            return record, allocation
    return None, None


# =============================================================================
# Repository
# =============================================================================

class InventoryError(Exception):
    """Inventory 저장소 오류"""


class InventoryConflict(InventoryError):
    """읽은 뒤 레코드가 바뀜 (optimistic concurrency 실패)"""


class InventoryNotFound(InventoryError):
    pass


class InventoryFormatError(InventoryError):
    """CR 내용을 해석할 수 없음 (알 수 없는 allocationStatus 등)"""


class InventoryRepository:
    """
    Versioned store of SliceInventory records

    - list(): 전체 레코드
    - get(name): (record, version)
    - update(name, record, expected_version): version 이 다르면 InventoryConflict
    """

    def list(self) -> List[SliceInventory]:
        raise NotImplementedError

    def get(self, name: str) -> Tuple[SliceInventory, str]:
        raise NotImplementedError

    def update(self, name: str, record: SliceInventory, expected_version: str) -> SliceInventory:
        raise NotImplementedError


__all__ = [
    "AllocationStatus", "PreparedSlice", "SlicePlacement", "ProfilePlacement",
    "Allocation", "SliceInventory", "find_allocation",
    "InventoryError", "InventoryConflict", "InventoryNotFound", "InventoryFormatError",
    "InventoryRepository",
]
