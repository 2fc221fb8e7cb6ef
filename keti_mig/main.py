#!/usr/bin/env python3
"""
KETI MIG Slice Controller
Entry point for the controller Deployment

구성요소:
1. EventWatcher - Pod / SliceInventory watch -> WorkQueue
2. SliceReconciler - MIG slice 할당 상태 머신 (핵심!)
3. ReconcileWorkerPool - WorkQueue 처리
4. ControllerAPI - health / status

Node agent (DaemonSet) 가 slice 를 실제로 생성/삭제하고 SliceInventory 의
allocation 상태를 created / deleted 로 바꾼다.
"""

import logging
import signal
import sys
import threading
import time

from keti_mig.api import ControllerAPI
from keti_mig.config import LOG_LEVEL, NODE_NAME, POD_NAME, WORKERS, get_config_summary
from keti_mig.controller import SliceReconciler
from keti_mig.health import NodeHealthOracle
from keti_mig.inventory.client import KubeInventoryRepository
from keti_mig.k8s import load_config
from keti_mig.watcher import EventWatcher
from keti_mig.worker import ReconcileWorkerPool
from keti_mig.workload import WorkloadClient
from keti_mig.workqueue import WorkQueue

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class Application:
    """Main application class"""

    def __init__(self):
        self.running = True

        if not load_config():
            raise RuntimeError("Kubernetes API not available")

        self.queue = WorkQueue()
        self.inventory = KubeInventoryRepository()
        self.workloads = WorkloadClient()

        logger.info("Initializing Slice Reconciler...")
        self.reconciler = SliceReconciler(
            inventory=self.inventory,
            workloads=self.workloads,
            health=NodeHealthOracle(),
        )

        self.watcher = EventWatcher(self.queue, self.workloads, self.inventory)
        self.workers = ReconcileWorkerPool(self.queue, self.reconciler, WORKERS)
        self.api = ControllerAPI(self.reconciler, self.queue, self.inventory, self.watcher)

        # Register signal handlers
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    def run(self):
        """Main run loop"""
        logger.info("=" * 50)
        logger.info("KETI MIG Slice Controller Starting...")
        logger.info("=" * 50)

        logger.info(f"Node: {NODE_NAME}")
        logger.info(f"Pod: {POD_NAME}")
        for key, value in get_config_summary().items():
            logger.info(f"  {key}: {value}")

        self.workers.start()
        self.watcher.start()
        threading.Thread(target=self.api.run, name="controller-api", daemon=True).start()

        logger.info("=" * 50)
        logger.info("KETI MIG Slice Controller is running!")
        logger.info("=" * 50)

        # Main loop
        while self.running:
            try:
                self._periodic_status()
                time.sleep(30)
            except Exception as e:
                logger.error(f"Error in main loop: {e}")
                time.sleep(5)

        self._shutdown()

    def _periodic_status(self):
        """Periodic status logging"""
        stats = self.reconciler.get_stats()
        if stats.get('passes'):
            logger.info(f"Status: {stats.get('passes', 0)} passes, "
                        f"{stats.get('errors', 0)} errors, "
                        f"queue={len(self.queue)} ready/{self.queue.pending_delayed()} delayed")

    def _shutdown(self):
        """Graceful shutdown"""
        logger.info("Shutting down...")
        self.watcher.stop()
        self.workers.stop()
        logger.info("KETI MIG Slice Controller stopped.")


def main():
    """Entry point"""
    import traceback
    try:
        app = Application()
        app.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
