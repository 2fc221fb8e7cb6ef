"""
Workload Module - Pod 조회/수정

Pod 는 API server 와 같은 형태의 dict 로 다룬다 (webhook 과 동일).
update 는 resourceVersion 을 포함한 replace 이므로 충돌 시 409.
"""

import logging
from typing import Iterator, Optional, Tuple

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from ..config import WATCH_TIMEOUT_SECONDS
from ..k8s import TRANSPORT_ERRORS, to_dict

logger = logging.getLogger(__name__)


class WorkloadError(Exception):
    """Pod 조회/수정 실패 (일시적, 재시도)"""


class WorkloadUpdateError(WorkloadError):
    """Pod update 실패"""


class WorkloadConflict(WorkloadUpdateError):
    """Pod 가 읽은 뒤 변경됨"""


def workload_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def split_key(key: str) -> Tuple[str, str]:
    namespace, _, name = key.partition('/')
    if not name:
        return 'default', namespace
    return namespace, name


def pod_key(pod: dict) -> str:
    metadata = pod.get('metadata') or {}
    return workload_key(metadata.get('namespace', 'default'), metadata.get('name', 'unknown'))


class WorkloadClient:
    """CoreV1Api wrapper for the pods this controller gates"""

    def __init__(self, api: client.CoreV1Api = None):
        self.api = api or client.CoreV1Api()

    def get(self, namespace: str, name: str) -> Optional[dict]:
        """Pod 조회, 없으면 None"""
        try:
            pod = self.api.read_namespaced_pod(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise WorkloadError(f"reading pod {namespace}/{name} failed: {e.status} {e.reason}") from e
        except TRANSPORT_ERRORS as e:
            raise WorkloadError(f"reading pod {namespace}/{name} failed: {e}") from e
        return to_dict(pod)

    def update(self, pod: dict) -> dict:
        metadata = pod.get('metadata') or {}
        name = metadata.get('name')
        namespace = metadata.get('namespace', 'default')
        try:
            updated = self.api.replace_namespaced_pod(name, namespace, pod)
        except ApiException as e:
            if e.status == 409:
                raise WorkloadConflict(f"pod {namespace}/{name} changed, retry") from e
            raise WorkloadUpdateError(f"updating pod {namespace}/{name} failed: "
                                      f"{e.status} {e.reason}") from e
        except TRANSPORT_ERRORS as e:
            raise WorkloadUpdateError(f"updating pod {namespace}/{name} failed: {e}") from e
        return to_dict(updated)

    def watch(self, timeout_seconds: int = None) -> Iterator[Tuple[str, dict]]:
        """Stream (event_type, pod) across all namespaces"""
        w = watch.Watch()
        stream = w.stream(
            self.api.list_pod_for_all_namespaces,
            timeout_seconds=timeout_seconds or WATCH_TIMEOUT_SECONDS,
        )
        for event in stream:
            yield event['type'], to_dict(event['object'])


__all__ = [
    "WorkloadClient", "WorkloadError", "WorkloadUpdateError", "WorkloadConflict",
    "workload_key", "split_key", "pod_key",
]
