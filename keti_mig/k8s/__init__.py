"""
Kubernetes client bootstrap

in-cluster 설정 우선, 실패하면 kubeconfig 사용
"""

import logging

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

logger = logging.getLogger(__name__)

# ApiException 이 아닌 연결 오류 (connection refused, timeout, ...)
TRANSPORT_ERRORS = (HTTPError, OSError)


def load_config() -> bool:
    """Load in-cluster config, falling back to ~/.kube/config"""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
        return True
    except ConfigException:
        pass

    try:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")
        return True
    except (ConfigException, FileNotFoundError) as e:
        logger.error(f"Kubernetes config not available: {e}")
        return False


def to_dict(obj) -> dict:
    """V1 model -> plain dict (camelCase, API server 와 같은 형태)"""
    if isinstance(obj, dict):
        return obj
    return client.ApiClient().sanitize_for_serialization(obj)


__all__ = ["load_config", "to_dict", "TRANSPORT_ERRORS"]
