"""Keyed work queue with delayed requeue.

Keys are de-duplicated while they wait, and a key is never handed to two
workers at once: an ``add`` for a key that is being processed is parked and
re-queued once the running pass finishes.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Dict, Hashable, List, Optional, Set, Tuple

from vip_operator.reconciler import ReconcileResult

LOG = logging.getLogger(__name__)


class WorkQueue:
    def __init__(
        self,
        handler: Callable[[Hashable], Optional[ReconcileResult]],
        *,
        workers: int = 2,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        error_backoff: float = 1.0,
        max_error_backoff: float = 300.0,
    ) -> None:
        self._handler = handler
        self._error_backoff = error_backoff
        self._max_error_backoff = max_error_backoff
        self._failures: Dict[Hashable, int] = {}
        self._workers = workers
        self._stop = stop_event or threading.Event()
        self._clock = clock
        self._cond = threading.Condition()
        self._ready: List[Hashable] = []
        self._queued: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._dirty: Set[Hashable] = set()
        self._delayed: List[Tuple[float, int, Hashable]] = []
        self._delayed_due: Dict[Hashable, float] = {}
        self._counter = itertools.count()
        self._threads: List[threading.Thread] = []

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------
    def add(self, key: Hashable) -> None:
        with self._cond:
            if key in self._processing:
                self._dirty.add(key)
                return
            if key in self._queued:
                return
            self._queued.add(key)
            self._ready.append(key)
            self._cond.notify()

    def add_after(self, key: Hashable, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        due = self._clock() + delay
        with self._cond:
            current = self._delayed_due.get(key)
            if current is not None and current <= due:
                return
            self._delayed_due[key] = due
            heapq.heappush(self._delayed, (due, next(self._counter), key))
            self._cond.notify()

    def __len__(self) -> int:
        with self._cond:
            return len(self._ready)

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------
    def _promote_due(self) -> Optional[float]:
        """Move due delayed keys to the ready list; return seconds to the next one."""

        now = self._clock()
        while self._delayed:
            due, _, key = self._delayed[0]
            if self._delayed_due.get(key) != due:
                heapq.heappop(self._delayed)
                continue
            if due > now:
                return due - now
            heapq.heappop(self._delayed)
            del self._delayed_due[key]
            if key in self._processing:
                self._dirty.add(key)
            elif key not in self._queued:
                self._queued.add(key)
                self._ready.append(key)
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is ready, the queue stops, or ``timeout`` elapses."""

        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while not self._stop.is_set():
                wait = self._promote_due()
                if self._ready:
                    key = self._ready.pop(0)
                    self._queued.discard(key)
                    self._processing.add(key)
                    return key
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                # Bounded wait so a stop request is noticed promptly.
                self._cond.wait(timeout=min(wait, 1.0) if wait is not None else 1.0)
        return None

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                if key not in self._queued:
                    self._queued.add(key)
                    self._ready.append(key)
                self._cond.notify()

    def backoff_for(self, key: Hashable) -> float:
        """Delay before retrying ``key`` after its latest unexpected error."""

        with self._cond:
            failures = self._failures.get(key, 0)
        if failures == 0:
            return 0.0
        delay = self._error_backoff * (2 ** min(failures - 1, 30))
        return min(delay, self._max_error_backoff)

    def process_one(self, key: Hashable) -> None:
        try:
            result = self._handler(key)
        except Exception:
            with self._cond:
                self._failures[key] = self._failures.get(key, 0) + 1
            delay = self.backoff_for(key)
            LOG.exception("reconciliation of %s failed; retrying in %.1fs", key, delay)
            self.done(key)
            self.add_after(key, delay)
            return

        with self._cond:
            self._failures.pop(key, None)
        self.done(key)
        if result is not None and result.requeue:
            self.add_after(key, result.requeue_after)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while not self._stop.is_set():
            key = self.get()
            if key is None:
                continue
            self.process_one(key)

    def start(self) -> None:
        for index in range(self._workers):
            thread = threading.Thread(
                target=self._run, name=f"vip-worker-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        self._stop.set()
        with self._cond:
            self._cond.notify_all()

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
