"""
Worker Module - reconcile worker threads

WorkQueue 에서 key 를 꺼내 reconcile 하고 Result 에 따라 다시 넣는다.
- retry_now -> add
- retry_after -> add_after
- ConfigurationError -> 로그만 남기고 재시도하지 않음
- 그 외 예외 -> 1초 후 재시도
"""

import logging
import threading

from ..config import UPDATE_RETRY_SECONDS, WORKERS
from ..policy import ConfigurationError

logger = logging.getLogger(__name__)


class ReconcileWorkerPool:
    """Threads draining the work queue into the reconciler"""

    def __init__(self, queue, reconciler, workers: int = None):
        self.queue = queue
        self.reconciler = reconciler
        self.workers = workers or WORKERS
        self.running = False
        self.threads = []

    def start(self):
        self.running = True
        self.threads = []
        for i in range(self.workers):
            t = threading.Thread(target=self._run, name=f"reconcile-worker-{i}", daemon=True)
            t.start()
            self.threads.append(t)
        logger.info(f"Started {self.workers} reconcile workers")

    def stop(self):
        self.running = False
        self.queue.shutdown()
        for t in self.threads:
            t.join(timeout=5)
        logger.info("Reconcile workers stopped")

    def _run(self):
        while self.running:
            key = self.queue.get(timeout=1.0)
            if key is None:
                if self.queue.shutting_down:
                    return
                continue
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: str):
        """Reconcile one key and schedule its next pass"""
        try:
            result = self.reconciler.reconcile(key)
        except ConfigurationError as e:
            logger.error(f"Invalid GPU slice request, not retrying: {e}")
            return
        except Exception as e:
            logger.exception(f"Reconcile of {key} failed: {e}")
            self.queue.add_after(key, UPDATE_RETRY_SECONDS)
            return

        if result.requeue:
            self.queue.add(key)
        elif result.requeue_after > 0:
            self.queue.add_after(key, result.requeue_after)


__all__ = ["ReconcileWorkerPool"]
