"""
Controller API - health / status endpoints

- GET /health: liveness
- GET /ready: watch 가 동작 중일 때만 200
- GET /status: 설정 요약, queue 상태, reconcile 통계
- GET /inventory: 현재 SliceInventory snapshot (visualize_inventory.py 가 사용)
"""

import logging

from flask import Flask, jsonify

from ..config import API_HOST, API_PORT, get_config_summary
from ..inventory import InventoryError

logger = logging.getLogger(__name__)


class ControllerAPI:
    """Flask app exposing controller state"""

    def __init__(self, reconciler, queue, inventory, watcher=None):
        self.reconciler = reconciler
        self.queue = queue
        self.inventory = inventory
        self.watcher = watcher
        self.app = Flask(__name__)
        self._setup_routes()
        logger.info("ControllerAPI initialized")

    def _setup_routes(self):
        """Setup Flask routes"""
        self.app.add_url_rule('/health', 'health', self.health, methods=['GET'])
        self.app.add_url_rule('/ready', 'ready', self.ready, methods=['GET'])
        self.app.add_url_rule('/status', 'status', self.status, methods=['GET'])
        self.app.add_url_rule('/inventory', 'inventory', self.list_inventory, methods=['GET'])

    def health(self):
        """Health check endpoint"""
        return jsonify({"status": "healthy"})

    def ready(self):
        """Readiness check endpoint"""
        if self.watcher is not None and not self.watcher.ready:
            return jsonify({"status": "not ready"}), 503
        return jsonify({"status": "ready"})

    def status(self):
        watcher = {}
        if self.watcher is not None:
            watcher = {
                "pod_events": self.watcher.pod_events,
                "inventory_events": self.watcher.inventory_events,
            }
        return jsonify({
            "config": get_config_summary(),
            "queue": {
                "ready": len(self.queue),
                "delayed": self.queue.pending_delayed(),
            },
            "watcher": watcher,
            "reconcile": self.reconciler.get_stats(),
        })

    def list_inventory(self):
        try:
            records = self.inventory.list()
        except InventoryError as e:
            logger.error(f"Failed to list inventory: {e}")
            return jsonify({"error": str(e)}), 502
        return jsonify({"items": [r.to_object() for r in records]})

    def run(self, host: str = None, port: int = None):
        """Run the API server (blocking)"""
        host = host or API_HOST
        port = port or API_PORT
        logger.info(f"Starting controller API on {host}:{port}")
        self.app.run(host=host, port=port, threaded=True)


__all__ = ["ControllerAPI"]
