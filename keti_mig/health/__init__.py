"""
Node Health Oracle

GPU operator 의 device plugin DaemonSet Pod 가 Running + Ready 인지 확인.
MIG slice 를 capacity 로 광고하는 주체이므로, 이것이 준비되지 않으면
Pod 를 ungate 해도 스케줄되지 않는다.
"""

import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..config import HEALTH_POD_PREFIX, HEALTH_NAMESPACE
from ..k8s import TRANSPORT_ERRORS

logger = logging.getLogger(__name__)


class HealthCheckError(Exception):
    """상태를 알 수 없음 (unhealthy 로 취급)"""


class NodeHealthOracle:
    """첫 번째 prefix 일치 Pod 의 Running/Ready 상태를 보고"""

    def __init__(self, api: client.CoreV1Api = None, prefix: str = None, namespace: str = None):
        self.api = api or client.CoreV1Api()
        self.prefix = prefix or HEALTH_POD_PREFIX
        self.namespace = namespace or HEALTH_NAMESPACE

    def is_healthy(self) -> bool:
        try:
            pods = self.api.list_namespaced_pod(self.namespace)
        except ApiException as e:
            logger.error(f"Unable to list pods in namespace {self.namespace}: {e.status} {e.reason}")
            raise HealthCheckError(f"listing {self.namespace} pods failed") from e
        except TRANSPORT_ERRORS as e:
            logger.error(f"Unable to reach API server listing pods in {self.namespace}: {e}")
            raise HealthCheckError(f"listing {self.namespace} pods failed") from e

        for pod in pods.items:
            name = pod.metadata.name or ''
            if not name.startswith(self.prefix):
                continue

            if pod.status.phase != 'Running':
                logger.info(f"Pod {self.namespace}/{name} is not in Running phase")
                return False

            for condition in pod.status.conditions or []:
                if condition.type == 'Ready' and condition.status != 'True':
                    logger.info(f"Pod {self.namespace}/{name} is not Ready")
                    return False

            logger.debug(f"Pod {self.namespace}/{name} is Running and Ready")
            return True

        logger.info(f"No pod matching {self.prefix}* found in {self.namespace}")
        return False


__all__ = ["NodeHealthOracle", "HealthCheckError"]
