"""
Placement Policy Module - MIG slice 배치 정책

place(request, snapshot) -> Allocation (status 없음) 또는 None (capacity 없음)

정책:
- first-fit: 구현됨
- left-to-right / right-to-left: 예약만 됨, 호출하면 NotImplementedError
  (빈 결과를 돌려주면 "capacity 없음" 과 구분이 안 되기 때문)

Profile 규칙: nvidia.com/mig-<N>g.<M>gb
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from kubernetes.utils import parse_quantity

from ..config import MIG_RESOURCE_PREFIX
from ..inventory import Allocation, SliceInventory

logger = logging.getLogger(__name__)

PROFILE_PATTERN = re.compile(r'(\d+g\.\d+gb)')


class ConfigurationError(Exception):
    """Workload 요청이 지원되지 않는 형태 (재시도하지 않음)"""


@dataclass(frozen=True)
class SliceRequest:
    """Workload 하나의 slice 요청"""
    profile: str
    workload_id: str
    namespace: str
    workload_name: str
    resource_identifier: str = ""
    cpu_milli: int = 0
    memory: int = 0


def extract_profile_name(limits: Dict[str, str], prefix: str = MIG_RESOURCE_PREFIX) -> str:
    """
    Container limits 에서 MIG profile 추출

    예: {"nvidia.com/mig-1g.5gb": "1"} -> "1g.5gb"
    """
    for key in sorted(limits or {}):
        if key.startswith(prefix):
            match = PROFILE_PATTERN.search(key)
            if match:
                return match.group(1)
    return ""


def _cpu_milli(value) -> int:
    if value in (None, ''):
        return 0
    return int(parse_quantity(value) * 1000)


def _memory_bytes(value) -> int:
    if value in (None, ''):
        return 0
    return int(parse_quantity(value))


def build_slice_request(pod: dict, resource_identifier: str = "",
                        prefix: str = MIG_RESOURCE_PREFIX) -> SliceRequest:
    """
    Pod spec -> SliceRequest

    Raises:
        ConfigurationError: container 가 1개가 아니거나, MIG resource 가
            없거나 여러 개이거나, 1 unit 을 초과해 요청한 경우
    """
    metadata = pod.get('metadata') or {}
    containers = (pod.get('spec') or {}).get('containers') or []
    pod_key = f"{metadata.get('namespace')}/{metadata.get('name')}"

    if len(containers) != 1:
        raise ConfigurationError(f"{pod_key}: multiple containers per pod not supported "
                                 f"(found {len(containers)})")

    resources = containers[0].get('resources') or {}
    limits = resources.get('limits') or {}
    requests = resources.get('requests') or {}

    mig_keys = [k for k in limits if k.startswith(prefix)]
    if not mig_keys:
        raise ConfigurationError(f"{pod_key}: no {prefix}<profile> resource requested")
    if len(mig_keys) > 1:
        raise ConfigurationError(f"{pod_key}: more than one slice profile requested: {sorted(mig_keys)}")

    profile = extract_profile_name(limits, prefix)
    if not profile:
        raise ConfigurationError(f"{pod_key}: cannot parse profile from {mig_keys[0]}")

    units = parse_quantity(limits[mig_keys[0]])
    if units != 1:
        raise ConfigurationError(f"{pod_key}: requests {units} units of {mig_keys[0]}, "
                                 f"only one slice per request is supported")

    return SliceRequest(
        profile=profile,
        workload_id=metadata.get('uid', ''),
        namespace=metadata.get('namespace', ''),
        workload_name=metadata.get('name', ''),
        resource_identifier=resource_identifier,
        cpu_milli=_cpu_milli(requests.get('cpu', limits.get('cpu'))),
        memory=_memory_bytes(requests.get('memory', limits.get('memory'))),
    )


class PlacementPolicy:
    """Slice 배치 정책 인터페이스"""

    name = ""

    def place(self, request: SliceRequest,
              snapshot: Iterable[SliceInventory]) -> Optional[Allocation]:
        raise NotImplementedError


class FirstFitPolicy(PlacementPolicy):
    """
    First-fit 배치

    노드 이름 -> GPU id -> start offset 순서로 탐색하고, 같은 GPU 위의
    Allocation 이나 PreparedSlice 와 겹치지 않는 첫 위치를 선택한다.
    정렬은 결과를 재현 가능하게 하기 위함이다.
    """

    name = "first-fit"

    def place(self, request, snapshot):
        for record in sorted(snapshot, key=lambda r: r.name):
            entry = record.placements.get(request.profile)
            if entry is None or not entry.placements:
                continue

            for device_id in record.device_ids():
                for placement in sorted(entry.placements, key=lambda p: (p.start, p.size)):
                    conflict = record.range_conflict(device_id, placement.start, placement.size)
                    if conflict is not None:
                        continue

                    logger.info(f"First-fit: {request.namespace}/{request.workload_name} -> "
                                f"{record.name}/{device_id} start={placement.start} "
                                f"size={placement.size} ({request.profile})")
                    return Allocation(
                        profile=request.profile,
                        start=placement.start,
                        size=placement.size,
                        workload_id=request.workload_id,
                        node_name=record.name,
                        device_id=device_id,
                        status=None,
                        namespace=request.namespace,
                        workload_name=request.workload_name,
                        resource_identifier=request.resource_identifier,
                        cpu_milli=request.cpu_milli,
                        memory=request.memory,
                        gi_profile_id=entry.gi_profile_id,
                        ci_profile_id=entry.ci_profile_id,
                        ci_eng_profile_id=entry.ci_eng_profile_id,
                    )

        logger.debug(f"First-fit: no capacity for {request.profile}")
        return None


class LeftToRightPolicy(PlacementPolicy):
    # not implemented
    name = "left-to-right"

    def place(self, request, snapshot):
        raise NotImplementedError("left-to-right placement policy is not implemented")


class RightToLeftPolicy(PlacementPolicy):
    # not implemented
    name = "right-to-left"

    def place(self, request, snapshot):
        raise NotImplementedError("right-to-left placement policy is not implemented")


POLICIES = {
    FirstFitPolicy.name: FirstFitPolicy,
    LeftToRightPolicy.name: LeftToRightPolicy,
    RightToLeftPolicy.name: RightToLeftPolicy,
}


def get_policy(name: str) -> PlacementPolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown placement policy: {name} (available: {sorted(POLICIES)})")


__all__ = [
    "ConfigurationError", "SliceRequest", "PlacementPolicy",
    "FirstFitPolicy", "LeftToRightPolicy", "RightToLeftPolicy",
    "get_policy", "extract_profile_name", "build_slice_request",
]
