"""
SliceInventory Repository Client

Kubernetes CustomObjectsApi 로 SliceInventory CR 을 읽고 쓴다
- list: 전체 노드 inventory
- get: 최신 레코드 + resourceVersion
- update: resourceVersion 을 지정한 replace (optimistic concurrency)

API 오류, 연결 오류, 해석할 수 없는 CR 은 모두 InventoryError 로 올라간다.
"""

import logging
from typing import Iterator, List, Tuple

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from ..config import (
    INVENTORY_GROUP, INVENTORY_VERSION, INVENTORY_PLURAL, INVENTORY_NAMESPACE,
    WATCH_TIMEOUT_SECONDS,
)
from ..k8s import TRANSPORT_ERRORS
from . import (
    SliceInventory, InventoryRepository,
    InventoryError, InventoryConflict, InventoryNotFound, InventoryFormatError,
)

logger = logging.getLogger(__name__)


class KubeInventoryRepository(InventoryRepository):
    """SliceInventory CR repository"""

    def __init__(self, api: client.CustomObjectsApi = None, namespace: str = None):
        self.api = api or client.CustomObjectsApi()
        self.namespace = namespace or INVENTORY_NAMESPACE
        self.group = INVENTORY_GROUP
        self.version = INVENTORY_VERSION
        self.plural = INVENTORY_PLURAL
        logger.info(f"KubeInventoryRepository initialized: "
                    f"{self.plural}.{self.group}/{self.version} in {self.namespace}")

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def list(self) -> List[SliceInventory]:
        try:
            result = self.api.list_namespaced_custom_object(
                self.group, self.version, self.namespace, self.plural
            )
        except ApiException as e:
            raise InventoryError(f"listing inventory failed: {e.status} {e.reason}") from e
        except TRANSPORT_ERRORS as e:
            raise InventoryError(f"listing inventory failed: {e}") from e
        return [SliceInventory.from_object(item) for item in result.get('items', [])]

    def get(self, name: str) -> Tuple[SliceInventory, str]:
        try:
            obj = self.api.get_namespaced_custom_object(
                self.group, self.version, self.namespace, self.plural, name
            )
        except ApiException as e:
            if e.status == 404:
                raise InventoryNotFound(name) from e
            raise InventoryError(f"reading inventory {name} failed: {e.status} {e.reason}") from e
        except TRANSPORT_ERRORS as e:
            raise InventoryError(f"reading inventory {name} failed: {e}") from e
        record = SliceInventory.from_object(obj)
        return record, record.resource_version

    def update(self, name: str, record: SliceInventory, expected_version: str) -> SliceInventory:
        body = record.to_object(api_version=self.api_version)
        body['metadata']['namespace'] = self.namespace
        body['metadata']['resourceVersion'] = expected_version

        try:
            obj = self.api.replace_namespaced_custom_object(
                self.group, self.version, self.namespace, self.plural, name, body
            )
        except ApiException as e:
            if e.status == 409:
                raise InventoryConflict(f"inventory {name} changed since version {expected_version}") from e
            if e.status == 404:
                raise InventoryNotFound(name) from e
            raise InventoryError(f"updating inventory {name} failed: {e.status} {e.reason}") from e
        except TRANSPORT_ERRORS as e:
            raise InventoryError(f"updating inventory {name} failed: {e}") from e

        logger.debug(f"Inventory {name} updated (version {expected_version} -> "
                     f"{obj.get('metadata', {}).get('resourceVersion')})")
        return SliceInventory.from_object(obj)

    def watch(self, timeout_seconds: int = None) -> Iterator[Tuple[str, SliceInventory]]:
        """Stream (event_type, record) until the server closes the watch"""
        w = watch.Watch()
        stream = w.stream(
            self.api.list_namespaced_custom_object,
            self.group, self.version, self.namespace, self.plural,
            timeout_seconds=timeout_seconds or WATCH_TIMEOUT_SECONDS,
        )
        for event in stream:
            try:
                record = SliceInventory.from_object(event['object'])
            except InventoryFormatError as e:
                logger.warning(f"Skipping {event['type'].lower()} event: {e}")
                continue
            yield event['type'], record


__all__ = ["KubeInventoryRepository"]
