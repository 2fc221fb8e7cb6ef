"""
Configuration Module

환경변수 및 설정 관리
"""

import os

# =============================================================================
# Gate / Finalizer 설정
# =============================================================================
GATE_NAME = os.environ.get('KETI_GATE_NAME', 'keti.io/mig-gate')
FINALIZER_NAME = os.environ.get('KETI_FINALIZER_NAME', 'keti.io/mig-finalizer')
NODE_LABEL = os.environ.get('KETI_NODE_LABEL', 'kubernetes.io/hostname')

# Pod limits 에서 MIG profile 을 찾을 때 사용하는 resource prefix
# 예: nvidia.com/mig-1g.5gb
MIG_RESOURCE_PREFIX = os.environ.get('KETI_MIG_RESOURCE_PREFIX', 'nvidia.com/mig-')

# =============================================================================
# Slice Inventory (Custom Resource) 설정
# =============================================================================
INVENTORY_GROUP = os.environ.get('KETI_INVENTORY_GROUP', 'keti.io')
INVENTORY_VERSION = os.environ.get('KETI_INVENTORY_VERSION', 'v1alpha1')
INVENTORY_PLURAL = os.environ.get('KETI_INVENTORY_PLURAL', 'sliceinventories')
INVENTORY_NAMESPACE = os.environ.get('KETI_INVENTORY_NAMESPACE', 'default')

# =============================================================================
# Node Health Oracle 설정 (GPU operator device plugin)
# =============================================================================
HEALTH_POD_PREFIX = os.environ.get('KETI_HEALTH_POD_PREFIX', 'nvidia-device-plugin-daemonset')
HEALTH_NAMESPACE = os.environ.get('KETI_HEALTH_NAMESPACE', 'gpu-operator')

# =============================================================================
# Reconcile 타이밍 (seconds)
# =============================================================================
DEPENDENCY_RETRY_SECONDS = float(os.environ.get('KETI_DEPENDENCY_RETRY_SECONDS', '2'))
UPDATE_RETRY_SECONDS = float(os.environ.get('KETI_UPDATE_RETRY_SECONDS', '1'))
NO_CAPACITY_MIN_SECONDS = int(os.environ.get('KETI_NO_CAPACITY_MIN_SECONDS', '1'))
NO_CAPACITY_MAX_SECONDS = int(os.environ.get('KETI_NO_CAPACITY_MAX_SECONDS', '10'))
GRACE_PERIOD_SECONDS = float(os.environ.get('KETI_GRACE_PERIOD_SECONDS', '30'))

# =============================================================================
# Controller 설정
# =============================================================================
PLACEMENT_POLICY = os.environ.get('KETI_PLACEMENT_POLICY', 'first-fit')
WORKERS = int(os.environ.get('KETI_WORKERS', '4'))
WATCH_TIMEOUT_SECONDS = int(os.environ.get('KETI_WATCH_TIMEOUT_SECONDS', '300'))

# =============================================================================
# API Server 설정
# =============================================================================
API_HOST = os.environ.get('KETI_API_HOST', '0.0.0.0')
API_PORT = int(os.environ.get('KETI_API_PORT', '8081'))

# =============================================================================
# 로깅 설정
# =============================================================================
LOG_LEVEL = os.environ.get('KETI_LOG_LEVEL', 'INFO')

NODE_NAME = os.environ.get('NODE_NAME', 'unknown')
POD_NAME = os.environ.get('POD_NAME', 'unknown')


def get_config_summary() -> dict:
    """현재 설정 요약"""
    return {
        "gate_name": GATE_NAME,
        "finalizer_name": FINALIZER_NAME,
        "node_label": NODE_LABEL,
        "mig_resource_prefix": MIG_RESOURCE_PREFIX,
        "inventory": f"{INVENTORY_PLURAL}.{INVENTORY_GROUP}/{INVENTORY_VERSION}",
        "inventory_namespace": INVENTORY_NAMESPACE,
        "health_check": f"{HEALTH_NAMESPACE}/{HEALTH_POD_PREFIX}*",
        "placement_policy": PLACEMENT_POLICY,
        "workers": WORKERS,
        "grace_period_seconds": GRACE_PERIOD_SECONDS,
        "api": f"{API_HOST}:{API_PORT}",
    }
