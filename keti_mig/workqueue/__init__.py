"""
Work Queue - workload key 처리 대기열

- 같은 key 는 한 번만 대기 (중복 제거)
- 처리 중인 key 는 다른 worker 에게 주지 않음; 처리 중 다시 추가되면
  done() 이후에 대기열로 들어감
- add_after: 지연 후 추가 (retry_after); key 당 가장 이른 시점 하나만 유지
"""

import heapq
import itertools
import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class WorkQueue:
    """De-duplicating delayed work queue"""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._cond = threading.Condition()
        self._queue = []           # ready keys, FIFO
        self._dirty = set()        # keys waiting to be processed
        self._processing = set()   # keys handed to a worker
        self._delayed = []         # heap of (ready_at, seq, key)
        self._due = {}             # key -> earliest pending ready_at
        self._seq = itertools.count()
        self._shutting_down = False

    def add(self, key: str):
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: str):
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: str, delay: float):
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            due = self._due.get(key)
            if due is not None and due <= ready_at:
                return
            self._due[key] = ready_at
            heapq.heappush(self._delayed, (ready_at, next(self._seq), key))
            self._cond.notify()

    def _promote_delayed_locked(self) -> Optional[float]:
        """Move due delayed keys to the ready queue; return seconds until the next one"""
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            ready_at, _, key = heapq.heappop(self._delayed)
            # 더 이른 시점으로 다시 등록되어 대체된 항목
            if self._due.get(key) != ready_at:
                continue
            del self._due[key]
            self._add_locked(key)
        if self._delayed:
            return self._delayed[0][0] - now
        return None

    def get(self, timeout: float = None) -> Optional[str]:
        """
        Block until a key is ready

        Returns None on shutdown or timeout.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                next_due = self._promote_delayed_locked()
                if self._queue:
                    key = self._queue.pop(0)
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                if self._shutting_down:
                    return None

                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: str):
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self):
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def pending_delayed(self) -> int:
        with self._cond:
            return len(self._due)

    def __len__(self):
        with self._cond:
            return len(self._queue)


__all__ = ["WorkQueue"]
