from __future__ import annotations

import heapq
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from threading import Condition
from typing import Callable, Hashable


class SyncState(Enum):
    SUCCESS = "success"
    ERROR = "error"  # retryable
    ERROR_NO_RETRY = "error-no-retry"  # terminal until the resource changes


@dataclass(frozen=True)
class SyncResult:
    state: SyncState
    message: str = ""

    @classmethod
    def ok(cls) -> "SyncResult":
        return cls(SyncState.SUCCESS)

    @classmethod
    def retry(cls, message: str) -> "SyncResult":
        return cls(SyncState.ERROR, message)

    @classmethod
    def fail(cls, message: str) -> "SyncResult":
        return cls(SyncState.ERROR_NO_RETRY, message)


class ShutDown(Exception):
    pass


class WorkQueue:
    """Deduplicating work queue that hands a key to at most one worker at a time.

    A key added while it is being processed is parked and queued again when
    the worker calls done(). add_after() defers a key without blocking.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._cond = Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()  # queued or waiting for its worker to finish
        self._processing: set[Hashable] = set()
        self._delayed: list[tuple[float, int, Hashable]] = []
        self._seq = 0
        self._shutting_down = False

    def add(self, key: Hashable) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: Hashable, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            self._seq += 1
            heapq.heappush(self._delayed, (self.clock() + delay_s, self._seq, key))
            self._cond.notify()

    def _promote_due(self) -> float | None:
        """Move due delayed keys into the queue; return seconds until the next one."""
        now = self.clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heapq.heappop(self._delayed)
            if key in self._dirty:
                continue
            self._dirty.add(key)
            if key not in self._processing:
                self._queue.append(key)
        if self._delayed:
            return max(0.0, self._delayed[0][0] - now)
        return None

    def get(self, timeout: float | None = None) -> Hashable | None:
        """Block for the next key; None on timeout. Raises ShutDown once shut down."""
        deadline = None if timeout is None else self.clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    raise ShutDown()
                wait = self._promote_due()
                if self._queue:
                    key = self._queue.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                if deadline is not None:
                    remaining = deadline - self.clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._shutting_down

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def pending_delayed(self) -> int:
        with self._cond:
            return len(self._delayed)
