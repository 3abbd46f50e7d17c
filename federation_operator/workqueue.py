"""
DelayingQueue — deduplicating work queue with delayed delivery.

Guarantees:
  - A key is queued at most once; repeated add() calls coalesce.
  - add_after() keeps only the most imminent delivery time per key, and an
    immediate add() always wins over a pending delayed one.
  - At most one consumer holds a key at a time. A key added while it is
    being processed is marked dirty and handed out again after done().
  - get() blocks on a condition variable until a key is due or the queue is
    shut down; it never busy-polls.
"""

import heapq
import itertools
import threading
import time
from collections import deque
from typing import Hashable, Optional


class ShutDown(Exception):
    """Raised by get() once the queue has been shut down."""


class DelayingQueue:

    def __init__(self, name: str = "queue"):
        self.name = name
        self._cond = threading.Condition()
        self._ready: deque = deque()
        self._ready_set: set = set()
        self._processing: set = set()
        self._dirty: set = set()
        # key -> due time; the heap may hold stale entries for superseded times
        self._waiting: dict = {}
        self._heap: list = []
        self._seq = itertools.count()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # producer side
    # ------------------------------------------------------------------

    def add(self, key: Hashable):
        with self._cond:
            if self._shutting_down:
                return
            self._waiting.pop(key, None)
            self._make_ready(key)

    def add_after(self, key: Hashable, delay: float):
        if delay <= 0:
            self.add(key)
            return
        due = time.monotonic() + delay
        with self._cond:
            if self._shutting_down:
                return
            if key in self._ready_set:
                return
            current = self._waiting.get(key)
            if current is not None and current <= due:
                return
            self._waiting[key] = due
            heapq.heappush(self._heap, (due, next(self._seq), key))
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # consumer side
    # ------------------------------------------------------------------

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """
        Block until a key is ready and hand it out. Returns None when timeout
        expires first; raises ShutDown once the queue is shut down.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    raise ShutDown(self.name)
                now = time.monotonic()
                self._promote_due(now)
                if self._ready:
                    key = self._ready.popleft()
                    self._ready_set.discard(key)
                    self._processing.add(key)
                    return key
                wait = None
                if self._heap:
                    wait = max(self._heap[0][0] - now, 0)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable):
        """Release a key handed out by get(); requeue it if it was re-added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                if not self._shutting_down:
                    self._ready.append(key)
                    self._ready_set.add(key)
                    self._cond.notify()

    def shut_down(self):
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._ready) + len(self._waiting)

    def is_processing(self, key: Hashable) -> bool:
        with self._cond:
            return key in self._processing

    # ------------------------------------------------------------------

    def _make_ready(self, key):
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._ready_set:
            return
        self._ready.append(key)
        self._ready_set.add(key)
        self._cond.notify()

    def _promote_due(self, now: float):
        while self._heap and self._heap[0][0] <= now:
            due, _, key = heapq.heappop(self._heap)
            if self._waiting.get(key) != due:
                continue  # superseded by an earlier time or an immediate add
            del self._waiting[key]
            self._make_ready(key)


class Backoff:
    """Per-key exponential backoff, reset on success."""

    def __init__(self, initial: float, maximum: float):
        self.initial = initial
        self.maximum = maximum
        self._delays: dict = {}
        self._lock = threading.Lock()

    def next(self, key: Hashable) -> float:
        with self._lock:
            delay = self._delays.get(key)
            delay = self.initial if delay is None else min(delay * 2, self.maximum)
            self._delays[key] = delay
            return delay

    def __contains__(self, key: Hashable) -> bool:
        """True while key is backing off."""
        with self._lock:
            return key in self._delays

    def reset(self, key: Hashable):
        with self._lock:
            self._delays.pop(key, None)
