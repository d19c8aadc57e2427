"""Fixed-window outbound rate limiter with a FIFO backlog."""

import time
from collections import deque
from typing import Any, Callable


class RateLimiter:
    """Allow at most ``max_messages`` per ``interval`` seconds.

    Items that cannot go out yet wait in a FIFO queue; ``drain()`` hands back
    as many as the current window allows. Nothing here blocks: the owner
    calls ``drain()`` on a periodic tick.
    """

    def __init__(
        self,
        max_messages: int = 10,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._max = max_messages
        self._interval = interval
        self._clock = clock
        self._window_start: float | None = None
        self._count = 0
        self._queue: deque = deque()

    @property
    def pending(self) -> int:
        return len(self._queue)

    def try_acquire(self) -> bool:
        now = self._clock()
        if self._window_start is None or now - self._window_start >= self._interval:
            self._window_start = now
            self._count = 0
        if self._count < self._max:
            self._count += 1
            return True
        return False

    def submit(self, item: Any) -> None:
        self._queue.append(item)

    def requeue(self, item: Any) -> None:
        """Put an item back at the head of the queue."""
        self._queue.appendleft(item)

    def drain(self) -> list:
        """Pop the items the current window still has room for, in order."""
        ready = []
        while self._queue and self.try_acquire():
            ready.append(self._queue.popleft())
        return ready

    def discard(self, predicate: Callable[[Any], bool]) -> int:
        kept = [item for item in self._queue if not predicate(item)]
        removed = len(self._queue) - len(kept)
        self._queue = deque(kept)
        return removed

    def clear(self) -> None:
        self._queue.clear()
